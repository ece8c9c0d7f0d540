import unittest

from hpi_installer.client import MalformedSpecError
from hpi_installer.plugin_spec import (
    PluginRequest,
    VersionKind,
    VersionSpec,
    parse_plugin_line,
    parse_plugin_lines,
    strip_line,
)


class TestStripLine(unittest.TestCase):
    def test_strips_padding_comments_and_carriage_returns(self) -> None:
        self.assertEqual(strip_line("  git:5.2.1   # pinned for CVE\r"), "git:5.2.1")
        self.assertEqual(strip_line("# just a comment"), "")
        self.assertEqual(strip_line("   \t"), "")


class TestParsePluginLine(unittest.TestCase):
    def test_bare_id_is_latest_with_explicit_lock(self) -> None:
        req = parse_plugin_line("workflow-aggregator")
        self.assertEqual(req, PluginRequest(plugin_id="workflow-aggregator", version_spec=VersionSpec.latest()))
        self.assertTrue(req.explicit_lock)
        self.assertIsNone(req.pinned_url)

    def test_exact_version(self) -> None:
        req = parse_plugin_line("git:5.2.1")
        self.assertEqual(req.version_spec.kind, VersionKind.EXACT)
        self.assertEqual(req.version_spec.version, "5.2.1")

    def test_latest_and_experimental_keywords(self) -> None:
        self.assertEqual(parse_plugin_line("git:latest").version_spec, VersionSpec.latest())
        self.assertEqual(parse_plugin_line("git:experimental").version_spec, VersionSpec.experimental())

    def test_incrementals(self) -> None:
        req = parse_plugin_line(
            "workflow-support:incrementals;org.jenkins-ci.plugins.workflow;2.19-rc289.d09828a05a74"
        )
        spec = req.version_spec
        self.assertEqual(spec.kind, VersionKind.INCREMENTALS)
        self.assertEqual(spec.group_id, "org.jenkins-ci.plugins.workflow")
        self.assertEqual(spec.version, "2.19-rc289.d09828a05a74")
        self.assertEqual(spec.pinned_version, "2.19-rc289.d09828a05a74")

    def test_pinned_url_keeps_its_colons(self) -> None:
        req = parse_plugin_line("my-plugin:1.0:https://mirror.example.com:8443/my-plugin.hpi")
        self.assertEqual(req.plugin_id, "my-plugin")
        self.assertEqual(req.version_spec, VersionSpec.exact("1.0"))
        self.assertEqual(req.pinned_url, "https://mirror.example.com:8443/my-plugin.hpi")

    def test_pinned_url_without_version(self) -> None:
        req = parse_plugin_line("my-plugin:http://mirror.example.com/my-plugin.hpi")
        self.assertEqual(req.version_spec, VersionSpec.latest())
        self.assertEqual(req.pinned_url, "http://mirror.example.com/my-plugin.hpi")

    def test_lock_field(self) -> None:
        self.assertTrue(parse_plugin_line("git:5.2.1:true").explicit_lock)
        self.assertFalse(parse_plugin_line("git:5.2.1:false").explicit_lock)
        self.assertFalse(parse_plugin_line("git:5.2.1:no:https://example.com/git.hpi").explicit_lock)

    def test_blank_and_comment_lines_are_dropped(self) -> None:
        self.assertIsNone(parse_plugin_line(""))
        self.assertIsNone(parse_plugin_line("   # nothing here"))

    def test_malformed_lines_raise(self) -> None:
        for line in (":1.0", "bad id:1.0", "a:b:c:d", "git:incrementals;only-group", "group/plugin:1.0"):
            with self.subTest(line=line):
                with self.assertRaises(MalformedSpecError):
                    parse_plugin_line(line)


class TestParsePluginLines(unittest.TestCase):
    def test_skips_malformed_and_blank_lines_without_aborting(self) -> None:
        parsed = parse_plugin_lines(
            [
                "# base plugins",
                "git:5.2.1",
                "",
                "not a plugin:1.0",
                "  credentials   # latest",
            ]
        )
        self.assertEqual([r.plugin_id for r in parsed.requests], ["git", "credentials"])
        self.assertEqual(len(parsed.rejected), 1)
        self.assertEqual(parsed.rejected[0][0], "not a plugin:1.0")

    def test_request_str_round_trips_through_the_parser(self) -> None:
        req = parse_plugin_line("git:5.2.1:https://example.com/git.hpi")
        self.assertEqual(parse_plugin_line(str(req)), req)


if __name__ == "__main__":
    unittest.main()
