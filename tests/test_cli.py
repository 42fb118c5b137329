"""
Tests for the console entrypoint argv handling.
"""

from streamline.cli import _normalize_argv


class TestNormalizeArgv:

    def test_defaults_to_run(self):
        assert _normalize_argv(['streamline']) == ['streamline', 'run']

    def test_server_aliases(self):
        assert _normalize_argv(['streamline', 'serve', '--port', '9000']) == [
            'streamline', 'run', '--port', '9000',
        ]

    def test_bare_flags_mean_run(self):
        assert _normalize_argv(['streamline', '--port', '9000']) == [
            'streamline', 'run', '--port', '9000',
        ]

    def test_subcommands_untouched(self):
        assert _normalize_argv(['streamline', 'sweep']) == ['streamline', 'sweep']
        assert _normalize_argv(['streamline', '--help']) == ['streamline', '--help']
