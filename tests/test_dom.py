"""Tests for page-to-text extraction."""

from bs4 import BeautifulSoup

from helm.dom import build_selector, clean, extract_observation

from conftest import LOGIN_PAGE


def first(html: str, tag: str):
    return BeautifulSoup(html, "html.parser").find(tag)


class TestExtractObservation:

    def test_numbers_interactive_elements_in_order(self):
        obs = extract_observation(LOGIN_PAGE, url="https://example.com/")
        names = {i: (d.role, d.name) for i, d in obs.element_map.items()}
        assert names == {
            1: ("link", "Home"),
            2: ("link", "Docs"),
            3: ("link", "About"),
            4: ("button", "Login"),
            5: ("textbox", "Search"),
        }
        assert obs.element_map[4].selector == "[id='login']"
        assert obs.element_map[5].selector == "input[name='q']"

    def test_content_layout(self):
        obs = extract_observation(LOGIN_PAGE, url="https://example.com/")
        assert obs.title == "Example Domain"
        assert obs.content.startswith("**Example Domain**\nURL: https://example.com/\n")
        assert "__NAVIGATION__:" in obs.content
        assert "**Example Domain** (Level 1)" in obs.content
        assert '- Button "Login" [4]' in obs.content
        assert "illustrative examples" in obs.content

    def test_skips_hidden_and_script(self):
        html = """<body>
            <script>var secret = 1;</script>
            <button style="display: none">Ghost</button>
            <input type="hidden" name="csrf">
            <button aria-hidden="true">Hidden</button>
            <button disabled>Save</button>
            <input type="checkbox" checked aria-label="Remember me">
        </body>"""
        obs = extract_observation(html)
        assert "secret" not in obs.content
        assert [d.name for d in obs.element_map.values()] == ["Save", "Remember me"]
        assert '- Button "Save" [1] (disabled)' in obs.content
        assert '- Checkbox "Remember me" [2] (checked)' in obs.content

    def test_map_is_rebuilt_each_call(self):
        first_obs = extract_observation(LOGIN_PAGE)
        second_obs = extract_observation("<body><a href='/x'>Only</a></body>")
        assert list(second_obs.element_map) == [1]
        assert second_obs.element_map[1].name == "Only"
        assert first_obs.element_map[1].name == "Home"

    def test_char_budget_truncates(self):
        html = "<body>" + "".join(f"<p>paragraph number {i}</p>" for i in range(500)) + "</body>"
        obs = extract_observation(html, char_budget=300)
        assert obs.content.endswith("…(page content truncated)")
        assert len(obs.content) < 400


class TestSelectors:

    def test_selector_preference(self):
        assert build_selector(first('<button data-testid="go">Go</button>', "button")) == "[data-testid='go']"
        assert build_selector(first('<a href="/docs">Docs</a>', "a")) == "a[href='/docs']"
        assert build_selector(first('<button aria-label="Close"></button>', "button")) == "button[aria-label='Close']"
        assert build_selector(first("<button>Buy now</button>", "button")) == "button:has-text('Buy now')"
        assert build_selector(first('<button class="x y z"></button>', "button")) == "button.x.y"
        assert build_selector(first("<button></button>", "button")) == "button"

    def test_quotes_are_escaped(self):
        assert build_selector(first("<button>Don't</button>", "button")) == "button:has-text('Don\\'t')"

    def test_clean(self):
        assert clean("  a \n\t b  ") == "a b"
        assert clean("x" * 10, max_len=5) == "xxxx…"
