import unittest
from pathlib import Path

import httpx

from get_collection_data import AcquisitionError, ApiClient, CollectionRecord

TEST_DATA: Path = Path(__file__).parent / 'test_data'
BASE_URL: str = 'http://cdm.example.edu:81'


def make_api(handler) -> ApiClient:
    """
    Builds an ApiClient whose requests are answered by `handler` instead of the network.
    """
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ApiClient(client, f'{BASE_URL}/')


class TestListCollections(unittest.TestCase):
    """
    Tests ApiClient.list_collections().
    """

    def test_maps_alias_and_name(self) -> None:
        body: bytes = (TEST_DATA / 'collection_list.json').read_bytes()
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, content=body)

        computed: list[CollectionRecord] = make_api(handler).list_collections()
        self.assertEqual(computed, [CollectionRecord(alias='foo', title='Foo Collection')])
        self.assertEqual(computed[0].fields(), ('foo', 'Foo Collection'))
        self.assertEqual(requested, [f'{BASE_URL}/dmwebservices/index.php?q=dmGetCollectionList/json'])

    def test_skips_entries_without_alias(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{'name': 'No alias'}, 'junk', {'alias': '/bar', 'name': 'Bar'}])

        with self.assertLogs('get_collection_data', level='WARNING'):
            computed: list[CollectionRecord] = make_api(handler).list_collections()
        self.assertEqual(computed, [CollectionRecord(alias='bar', title='Bar')])

    def test_skips_entries_with_blank_alias(self) -> None:
        """
        Checks that aliases stripping down to nothing are dropped, so nothing lands in the output root.
        """

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{'alias': '/', 'name': 'Slash'}, {'alias': '', 'name': 'Empty'}])

        with self.assertLogs('get_collection_data', level='WARNING') as cm:
            computed: list[CollectionRecord] = make_api(handler).list_collections()
        self.assertEqual(computed, [])
        self.assertEqual(len(cm.output), 2)

    def test_http_error_is_fatal(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text='oops')

        with self.assertRaises(AcquisitionError):
            make_api(handler).list_collections()

    def test_connection_error_is_fatal(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError('unreachable', request=request)

        with self.assertRaises(AcquisitionError):
            make_api(handler).list_collections()

    def test_invalid_json_is_fatal(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text='<html>not json</html>')

        with self.assertRaises(AcquisitionError):
            make_api(handler).list_collections()

    def test_non_list_json_is_fatal(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={'message': 'Requested item not found'})

        with self.assertRaises(AcquisitionError):
            make_api(handler).list_collections()


class TestFetchFieldInfo(unittest.TestCase):
    """
    Tests ApiClient.fetch_field_info().
    """

    def test_returns_body_unmodified(self) -> None:
        body: bytes = (TEST_DATA / 'field_info_foo.json').read_bytes()

        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(str(request.url), f'{BASE_URL}/dmwebservices/index.php?q=dmGetCollectionFieldInfo/foo/json')
            return httpx.Response(200, content=body)

        self.assertEqual(make_api(handler).fetch_field_info('foo'), body)

    def test_failure_is_logged_and_empty(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text='missing')

        with self.assertLogs('get_collection_data', level='WARNING'):
            computed: bytes = make_api(handler).fetch_field_info('foo')
        self.assertEqual(computed, b'')


if __name__ == '__main__':
    unittest.main()
