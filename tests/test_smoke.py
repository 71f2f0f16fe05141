"""
Smoke tests to verify basic application integrity.
Ensures that all modules can be imported without errors.
"""
import unittest


class TestSmoke(unittest.TestCase):
    def test_import_cli(self):
        """Test that enginectl.cli can be imported successfully."""
        try:
            import enginectl.cli
        except ImportError as e:
            self.fail(f"Failed to import enginectl.cli: {e}")

    def test_import_main_module(self):
        """Test that enginectl.__main__ can be imported successfully."""
        try:
            import enginectl.__main__
        except ImportError as e:
            self.fail(f"Failed to import enginectl.__main__: {e}")

    def test_import_core(self):
        """Test that the core modules import without the CLI."""
        try:
            import enginectl.transport
            import enginectl.backend
            import enginectl.logstream
            import enginectl.state
            import enginectl.reconcile
            import enginectl.actions
        except ImportError as e:
            self.fail(f"Failed to import enginectl core: {e}")

    def test_errors_are_docker_exceptions(self):
        from docker.errors import DockerException
        from enginectl.errors import EngineError, TransportError, DecodeError, ProtocolError
        for cls in (EngineError, TransportError, DecodeError, ProtocolError):
            self.assertTrue(issubclass(cls, DockerException))


if __name__ == '__main__':
    unittest.main()
