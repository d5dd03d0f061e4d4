import io
import os
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

from lantern_net import cli
from lantern_net.errors import InterfaceNotFound


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = TemporaryDirectory()
        self.path = Path(self._temp.name) / "lantern.toml"

    def tearDown(self) -> None:
        self._temp.cleanup()

    def _main(self, *argv: str) -> tuple[int, str]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = cli.main(["--config", str(self.path), *argv])
        return code, buffer.getvalue()

    def test_init_refuses_to_overwrite(self) -> None:
        code, output = self._main("init")
        self.assertEqual(code, 0)
        self.assertTrue(self.path.exists())

        code, output = self._main("init")
        self.assertEqual(code, 1)
        self.assertIn("already exist", output)

        code, _ = self._main("init", "--force")
        self.assertEqual(code, 0)

    def test_show_prints_settings(self) -> None:
        self._main("init")

        code, output = self._main("show")

        self.assertEqual(code, 0)
        self.assertIn("[engine]", output)
        self.assertIn('country_code = "US"', output)

    def test_root_required(self) -> None:
        with mock.patch.dict(os.environ, {"LANTERN_ALLOW_NON_ROOT": "0"}), mock.patch("os.geteuid", return_value=1000):
            code, output = self._main("interfaces")

        self.assertEqual(code, 1)
        self.assertIn("must be run as root", output)

    def test_network_errors_become_exit_code(self) -> None:
        engine = mock.Mock()
        engine.scan.side_effect = InterfaceNotFound("wireless interface")
        with mock.patch.dict(os.environ, {"LANTERN_ALLOW_NON_ROOT": "1"}), mock.patch.object(cli, "NetworkEngine", return_value=engine):
            code, output = self._main("wifi", "scan")

        self.assertEqual(code, 1)
        self.assertIn("Interface not found: wireless interface", output)

    def test_web_serves_api_for_engine(self) -> None:
        engine = mock.Mock()
        with mock.patch.dict(os.environ, {"LANTERN_ALLOW_NON_ROOT": "1"}), mock.patch.object(cli, "NetworkEngine", return_value=engine), mock.patch("uvicorn.run") as run:
            code, _ = self._main("web", "--port", "9000")

        self.assertEqual(code, 0)
        engine.refresh.assert_called_once_with()
        app = run.call_args.args[0]
        self.assertIs(app.state.engine, engine)
        self.assertEqual(run.call_args.kwargs["host"], "127.0.0.1")
        self.assertEqual(run.call_args.kwargs["port"], 9000)

    def test_format_bytes(self) -> None:
        self.assertEqual(cli.format_bytes(512), "512 B")
        self.assertEqual(cli.format_bytes(1536), "1.5 KB")
        self.assertEqual(cli.format_bytes(5 * 1024 ** 3), "5.0 GB")


if __name__ == "__main__":
    unittest.main()
