import unittest
import json
import os
import sys
import tempfile

from starlette.testclient import TestClient

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backends.local import LocalBackend
from backends.registry import BackendList
from web import create_environment, handle_search, pretty_json, render
import main


class WebTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        root = self.tmp.name
        os.makedirs(os.path.join(root, "infra", "network"))
        with open(os.path.join(root, "infra", "prod.tfstate"), "w", encoding="utf-8") as f:
            json.dump({
                "terraform_version": "1.5.0",
                "outputs": {
                    "vpc_id": {"value": "vpc-123"},
                    "subnets": {"value": ["subnet-1", "<script>"]},
                },
            }, f)

        self.backends = BackendList()
        self.backends.add_state("be_1", LocalBackend(root))
        self.backends.add_state("be_2", LocalBackend(os.path.join(root, "infra")))

    def tearDown(self):
        self.tmp.cleanup()


class TestHandleSearch(WebTestCase):
    def test_defaults(self):
        with self.assertLogs("web", level="INFO") as logs:
            view = handle_search(self.backends, None, "")

        self.assertEqual(view.selected_backend, "be_1")
        self.assertEqual(view.spath, ".")
        self.assertEqual(view.backend_names, ["be_1", "be_2"])
        self.assertIsNone(view.error)
        self.assertEqual(list(view.result.subdirs), ["infra"])
        self.assertIn("searching backend be_1 for: .", logs.output[0])

    def test_state_found(self):
        view = handle_search(self.backends, "be_1", "infra")

        self.assertEqual(view.result.terraform_version, "1.5.0")
        self.assertEqual(view.result.outputs["vpc_id"], "vpc-123")

    def test_unknown_backend(self):
        view = handle_search(self.backends, "nope", ".")

        self.assertEqual(view.error, 'backend "nope" not found')
        self.assertEqual(view.backend_names, ["be_1", "be_2"])
        self.assertEqual(view.result.subdirs, {})

    def test_directory_error_keeps_backend_names(self):
        with self.assertLogs("web", level="ERROR"):
            view = handle_search(self.backends, "be_2", "missing")

        self.assertIn("could not read path contents", view.error)
        self.assertEqual(view.backend_names, ["be_1", "be_2"])
        self.assertEqual(view.result.subdirs, {})

    def test_empty_backend_list(self):
        with self.assertRaises(ValueError):
            handle_search(BackendList(), None, None)


class TestRender(WebTestCase):
    def test_render_escapes_and_pretty_prints(self):
        env = create_environment()
        html = render(env, handle_search(self.backends, "be_1", "infra"))

        self.assertIn('href="/search?backend=be_1&amp;spath=infra%2Fnetwork"', html)
        self.assertIn("terraform_version: 1.5.0", html)
        self.assertIn("&#34;vpc-123&#34;", html)
        self.assertIn("&lt;script&gt;", html)
        self.assertNotIn("<script>", html)

    def test_pretty_json(self):
        self.assertEqual(pretty_json({"a": [1]}), '{\n  "a": [\n    1\n  ]\n}')


class TestRoutes(WebTestCase):
    def setUp(self):
        super().setUp()
        main.backends = self.backends
        self.client = TestClient(main.mcp.sse_app())

    def tearDown(self):
        main.backends = None
        super().tearDown()

    def test_search_page(self):
        response = self.client.get("/search", params={"backend": "be_1", "spath": "infra"})

        self.assertEqual(response.status_code, 200)
        self.assertIn("text/html", response.headers["content-type"])
        self.assertIn("vpc_id", response.text)
        self.assertIn("infra/network", response.text)

    def test_search_page_error(self):
        response = self.client.get("/search", params={"backend": "be_2", "spath": "missing"})

        self.assertEqual(response.status_code, 200)
        self.assertIn("could not read path contents", response.text)
        self.assertIn('<option value="be_1"', response.text)

    def test_static_assets(self):
        self.assertEqual(self.client.get("/").status_code, 200)
        response = self.client.get("/public/style.css")
        self.assertEqual(response.status_code, 200)
        self.assertIn("text/css", response.headers["content-type"])
        self.assertEqual(self.client.get("/public/missing.css").status_code, 404)


if __name__ == '__main__':
    unittest.main()
