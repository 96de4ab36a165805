"""Unit tests for parse_ai_response()."""
from codegen.parser import parse_ai_response


class TestFileSelection:
    """Which version of a file wins when the model emits it more than once."""

    def test_closed_version_beats_earlier_unterminated_one(self) -> None:
        response = (
            '<file path="src/App.jsx">export default function App() {\n'
            '<file path="src/App.jsx">export default function App() { return null }</file>'
        )

        parsed = parse_ai_response(response)

        assert len(parsed.files) == 1
        assert parsed.files[0].content == "export default function App() { return null }"
        assert parsed.files[0].isComplete is True
        assert parsed.warnings == []

    def test_closed_version_is_kept_over_later_longer_unterminated_one(self) -> None:
        response = (
            '<file path="src/Header.jsx">const Header = () => null</file>\n'
            '<file path="src/Header.jsx">const Header = () => <header className="p-4">Title</header>'
        )

        parsed = parse_ai_response(response)

        assert parsed.files[0].content == "const Header = () => null"
        assert parsed.files[0].isComplete is True

    def test_longer_of_two_closed_versions_wins(self) -> None:
        response = (
            '<file path="src/index.css">body {}</file>'
            '<file path="src/index.css">body { margin: 0; }</file>'
        )

        parsed = parse_ai_response(response)

        assert parsed.files[0].content == "body { margin: 0; }"

    def test_files_keep_order_of_first_appearance(self) -> None:
        response = (
            '<file path="src/b.js">b</file>'
            '<file path="src/a.js">a</file>'
            '<file path="src/b.js">bbbb</file>'
        )

        parsed = parse_ai_response(response)

        assert [f.path for f in parsed.files] == ["src/b.js", "src/a.js"]
        assert parsed.files[0].content == "bbbb"

    def test_unterminated_file_at_end_is_kept_with_warning(self) -> None:
        parsed = parse_ai_response('<file path="src/Footer.jsx">const Footer = () => null')

        assert parsed.files[0].content == "const Footer = () => null"
        assert parsed.files[0].isComplete is False
        assert parsed.warnings == ["File src/Footer.jsx appears to be truncated (no closing tag)"]

    def test_whitespace_only_body_becomes_empty_content(self) -> None:
        parsed = parse_ai_response('<file path="src/empty.css">\n   \n</file>')

        assert parsed.files[0].content == ""
        assert parsed.files[0].isComplete is True


class TestEllipsisDetection:
    """A bare ``...`` marks a file as possibly elided."""

    def test_suspect_longer_version_does_not_replace_clean_one(self) -> None:
        response = (
            '<file path="src/App.jsx">function App() { return <div /> }</file>'
            '<file path="src/App.jsx">function App() {\n  // ...\n  return <div className="x" />\n}</file>'
        )

        parsed = parse_ai_response(response)

        assert parsed.files[0].content == "function App() { return <div /> }"
        assert parsed.files[0].isSuspect is False

    def test_closed_version_with_ellipsis_replaces_clean_unterminated_one(self) -> None:
        response = (
            '<file path="src/App.jsx">export default function App() {\n  return <div>\n'
            '<file path="src/App.jsx">export default function App() {\n'
            '  return <div>Loading...</div>\n}</file>'
        )

        parsed = parse_ai_response(response)

        assert parsed.files[0].isComplete is True
        assert parsed.files[0].content == "export default function App() {\n  return <div>Loading...</div>\n}"
        assert parsed.files[0].isSuspect is True
        assert parsed.warnings == ["File src/App.jsx contains ellipsis, may be truncated"]

    def test_only_version_with_ellipsis_is_kept_and_flagged(self) -> None:
        parsed = parse_ai_response('<file path="src/List.jsx">const items = [1, 2, ...]\n// ...</file>')

        assert parsed.files[0].isSuspect is True
        assert "File src/List.jsx contains ellipsis, may be truncated" in parsed.warnings

    def test_spread_and_rest_are_not_suspect(self) -> None:
        content = "const Button = ({ label, ...props }) => <button {...props}>{label}</button>"
        parsed = parse_ai_response(f'<file path="src/Button.jsx">{content}</file>')

        assert parsed.files[0].isSuspect is False
        assert parsed.warnings == []


class TestPackagesAndMetadata:
    """Packages, commands, structure and explanation."""

    def test_singular_tags_come_before_packages_block(self) -> None:
        response = (
            "<packages>axios, lodash\n@heroicons/react</packages>"
            "<package>three</package>"
        )

        parsed = parse_ai_response(response)

        assert parsed.packages == ["three", "axios", "lodash", "@heroicons/react"]

    def test_every_packages_block_is_read(self) -> None:
        response = "<packages>axios</packages> text <packages>\nzustand,\n\nclsx\n</packages>"

        parsed = parse_ai_response(response)

        assert parsed.packages == ["axios", "zustand", "clsx"]

    def test_commands_are_trimmed_and_empties_dropped(self) -> None:
        response = "<command> npm run lint </command><command>   </command><command>npm test</command>"

        parsed = parse_ai_response(response)

        assert parsed.commands == ["npm run lint", "npm test"]

    def test_structure_and_explanation_use_first_block(self) -> None:
        response = (
            "<structure>\nsrc/\n  App.jsx\n</structure>"
            "<explanation> Built a landing page. </explanation>"
            "<explanation>ignored</explanation>"
        )

        parsed = parse_ai_response(response)

        assert parsed.structure == "src/\n  App.jsx"
        assert parsed.explanation == "Built a landing page."

    def test_missing_sections_have_defaults(self) -> None:
        parsed = parse_ai_response("Sorry, I cannot help with that.")

        assert parsed.files == []
        assert parsed.packages == []
        assert parsed.commands == []
        assert parsed.structure is None
        assert parsed.explanation == ""

    def test_parsing_is_deterministic(self) -> None:
        response = '<file path="src/App.jsx">x</file><package>axios</package>'

        assert parse_ai_response(response) == parse_ai_response(response)
