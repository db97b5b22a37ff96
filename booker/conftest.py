import pytest

from booking_profile import BookingProfile


class FakeElement:
    """In-memory stand-in for a page element."""

    def __init__(self, text="", name=None, rendered=True, box=None, attrs=None,
                 checked=False, children=None, on_click=None, image=None):
        self.text = text
        self.name = name or text
        self.rendered = rendered
        self.box = box or {"x": 0, "y": 0, "width": 100, "height": 20}
        self.attrs = attrs or {}
        self.checked = checked
        self.children = children or {}
        self.on_click = on_click
        self.image = image
        self.clicks = 0
        self.value = None

    def __repr__(self):
        return f"FakeElement({self.name!r})"


class FakeSurface:
    """Interactive surface over a dict of selector -> elements."""

    def __init__(self):
        self.elements: dict[str, list[FakeElement]] = {}
        self.log = []
        self.urls = []
        self.screenshots = []
        self.closed = False

    def add(self, selector, *elements):
        self.elements.setdefault(selector, []).extend(elements)
        return elements[0] if len(elements) == 1 else elements

    @staticmethod
    def element(*args, **kwargs) -> FakeElement:
        return FakeElement(*args, **kwargs)

    def _all(self):
        stack = [e for group in self.elements.values() for e in group]
        while stack:
            el = stack.pop(0)
            yield el
            stack.extend(c for group in el.children.values() for c in group)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True

    async def navigate(self, url):
        self.urls.append(url)

    async def get_url(self):
        return self.urls[-1] if self.urls else "about:blank"

    async def get_html(self):
        return "<html><body>fake</body></html>"

    async def query_all(self, selector, within=None):
        source = within.children if within is not None else self.elements
        return list(source.get(selector, []))

    async def text_of(self, handle):
        return handle.text.strip()

    async def attribute(self, handle, name):
        return handle.attrs.get(name)

    async def is_rendered(self, handle):
        return handle.rendered

    async def is_checked(self, handle):
        return handle.checked

    async def bounding_box(self, handle):
        return dict(handle.box) if handle.rendered else None

    async def click(self, handle):
        handle.clicks += 1
        self.log.append(("click", handle.name))
        if handle.on_click:
            handle.on_click()

    async def click_at(self, x, y):
        for el in self._all():
            box = el.box
            if el.rendered and box["x"] <= x <= box["x"] + box["width"] and box["y"] <= y <= box["y"] + box["height"]:
                el.clicks += 1
                self.log.append(("click_at", el.name))
                if el.on_click:
                    el.on_click()
                return
        self.log.append(("click_at", None))

    async def type_text(self, handle, text):
        handle.value = text
        self.log.append(("type", handle.name, text))

    async def screenshot(self, handle=None, full_page=False):
        self.screenshots.append(handle if handle is not None else "page")
        if handle is not None and handle.image is not None:
            return handle.image
        return b"\x89PNG fake"


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def profile_data():
    return {
        "host": "https://ferry.example.com/",
        "credentials": {"identity": "A123456789", "secret": "hunter2"},
        "trip": {"origin": "Taitung", "destination": "Green Island"},
        "date": "2026-11-15",
        "session_period": "morning",
        "time_slots": ["09:30", "08:30"],
        "tickets": [
            {"category": "standard", "passenger": {"name": "Lin Mei", "identity_number": "A200000001"}},
            {"category": "concession", "passenger": {"name": "Lin Hao", "identity_number": "A100000002"}},
            {"category": "standard", "passenger": {"name": "Chen Yu", "identity_number": "B100000003"}},
        ],
        "solver": {"provider": "2captcha", "api_key": "test-key"},
    }


@pytest.fixture
def profile(profile_data):
    return BookingProfile.model_validate(profile_data)
