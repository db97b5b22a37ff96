"""The booking workflow steps.

Every step waits for its section of the page before acting, and resolves
elements from a fresh query right before each action: the booking site
re-renders asynchronously, so a handle from before a wait may be stale.
Short settle delays follow clicks that trigger re-renders with no reliable
signal to wait on.
"""
import asyncio
import datetime
import logging
from dataclasses import dataclass
from typing import Optional

from booking_profile import BookingProfile, PassengerInfo, TicketCategory
from config import (
    AUTH_ATTEMPTS,
    BOOKING_PATH,
    CALENDAR_HEADER_FORMAT,
    DATE_PICKER_ATTEMPTS,
    RETRY_BACKOFF,
    SEAT_PATTERN,
    SELECTORS,
    SETTLE_SECONDS,
    SLOT_LABEL_PATTERN,
    TEXTS,
    WAIT_TIMEOUT,
)
from errors import BookingError, ElementNotFound, NoEligibleSlot
from primitives import (
    attribute_contains,
    checked,
    click,
    click_center,
    find_and_act,
    has_text,
    rendered,
    type_into,
    visible,
    wait_until,
    with_retries,
)

logger = logging.getLogger(__name__)

# Category whose counter starts at one instead of zero
DEFAULT_CATEGORY = TicketCategory.STANDARD


@dataclass(frozen=True)
class AvailabilityCandidate:
    label: str
    seats_available: int


def parse_candidate(text: str) -> AvailabilityCandidate:
    """Time-slot button text -> label and remaining seats (0 if unreadable)."""
    seats = SEAT_PATTERN.search(text)
    label = SLOT_LABEL_PATTERN.search(text)
    return AvailabilityCandidate(
        label=label.group(0) if label else text.strip(),
        seats_available=int(seats.group(1)) if seats else 0,
    )


def choose_time_slot(
    candidates: list[AvailabilityCandidate],
    preferences: list[str] | tuple[str, ...],
    required: int,
) -> AvailabilityCandidate:
    """First slot in the operator's preference order with enough seats.

    DOM order does not matter. Raises NoEligibleSlot when none qualifies.
    """
    eligible = {}
    for candidate in candidates:
        if candidate.seats_available < required:
            logger.warning(
                "slot %s has %d seat(s), %d needed; skipping",
                candidate.label, candidate.seats_available, required,
            )
            continue
        eligible.setdefault(candidate.label, candidate)

    for label in preferences:
        if label in eligible:
            return eligible[label]
    raise NoEligibleSlot(
        f"none of the preferred slots {list(preferences)} has {required} seat(s) available"
    )


def counter_clicks(
    category: TicketCategory,
    requested: int,
    default_category: TicketCategory = DEFAULT_CATEGORY,
) -> tuple[int, int]:
    """(decrements, increments) that bring a counter to requested.

    The default category starts at one, so it is first brought down to zero.
    """
    decrements = 1 if category == default_category else 0
    return decrements, requested


def pair_passengers(
    row_categories: list[Optional[TicketCategory]],
    profile: BookingProfile,
) -> list[Optional[PassengerInfo]]:
    """Passenger record for each passenger row, in row order.

    The k-th row of a category receives the k-th passenger record of that
    category in profile order; tickets without details are not counted.
    Rows with no record left get None.
    """
    queues = {c: list(profile.passengers_for(c)) for c in TicketCategory}
    pairing = []
    for category in row_categories:
        queue = queues.get(category) if category else None
        pairing.append(queue.pop(0) if queue else None)
    return pairing


def category_of(label: str) -> Optional[TicketCategory]:
    for category in TicketCategory:
        if TEXTS[category.value] in label:
            return category
    return None


def target_month_differs(header_text: str, target: datetime.date) -> bool:
    shown = datetime.datetime.strptime(header_text.strip(), CALENDAR_HEADER_FORMAT)
    return (shown.year, shown.month) != (target.year, target.month)


class BookingSteps:
    """One coroutine per workflow step, each taking the interactive surface."""

    def __init__(
        self,
        profile: BookingProfile,
        coordinator=None,
        settle: float = SETTLE_SECONDS,
        wait_timeout: float = WAIT_TIMEOUT,
        backoff: float = RETRY_BACKOFF,
    ):
        self.profile = profile
        self.coordinator = coordinator
        self.settle = settle
        self.wait_timeout = wait_timeout
        self.backoff = backoff

    async def _wait_for(self, surface, selector_key: str, description: str, timeout: float | None = None) -> None:
        await wait_until(
            rendered(surface, SELECTORS[selector_key]),
            description, timeout or self.wait_timeout,
        )

    async def _click_required(self, surface, selector_key: str, matcher, what: str) -> None:
        if not await find_and_act(surface, SELECTORS[selector_key], matcher, click):
            raise ElementNotFound(SELECTORS[selector_key], what)
        await asyncio.sleep(self.settle)

    # -- account -------------------------------------------------------------

    async def change_language(self, surface) -> None:
        await surface.navigate(self.profile.host)
        await self._wait_for(surface, "language_menu", "language switch")
        await self._click_required(surface, "language_menu", visible, "language switch")
        await self._click_required(surface, "language_option", has_text(TEXTS["language"]), TEXTS["language"])
        logger.info("language set to %s", TEXTS["language"])

    async def locate_account(self, surface) -> None:
        await self._wait_for(surface, "account_menu", "member menu")
        await self._click_required(surface, "account_menu", visible, "member menu")

    async def navigate_login(self, surface) -> None:
        await self._click_required(surface, "account_links", has_text(TEXTS["login_link"]), "login link")
        await self._wait_for(surface, "login_form", "login form")

    async def enter_credentials(self, surface) -> None:
        creds = self.profile.credentials
        await self._wait_for(surface, "login_inputs", "login inputs")
        fields = [
            (attribute_contains("placeholder", TEXTS["account_placeholder"]), creds.identity, "account field"),
            (attribute_contains("placeholder", TEXTS["password_placeholder"]), creds.secret, "password field"),
        ]
        for matcher, value, what in fields:
            if not await find_and_act(surface, SELECTORS["login_inputs"], matcher, type_into(value)):
                raise ElementNotFound(SELECTORS["login_inputs"], what)
        logger.info("credentials entered for %s", creds.identity)

    async def authenticate(self, surface, attempts: int = AUTH_ATTEMPTS) -> None:
        """Submit the login form until the member name shows up."""

        async def attempt(n: int) -> None:
            await self._click_required(surface, "login_submit", visible, "login button")
            # Some accounts get a notice popup after login; it may not appear.
            await find_and_act(surface, SELECTORS["popup_buttons"], has_text(TEXTS["continue"], exact=False), click)
            await self._wait_for(surface, "logged_in_marker", "logged-in member name")

        await with_retries(attempt, attempts, self.backoff, "login")
        logger.info("logged in")

    # -- trip ----------------------------------------------------------------

    async def select_trip(self, surface) -> None:
        trip = self.profile.trip
        await surface.navigate(self.profile.host + BOOKING_PATH)
        await self._wait_for(surface, "trip_rows", "route list")

        async def matches_trip(surface, row) -> bool:
            if not await surface.is_rendered(row):
                return False
            origin = await surface.query_all(SELECTORS["trip_origin"], within=row)
            destination = await surface.query_all(SELECTORS["trip_destination"], within=row)
            if not origin or not destination:
                return False
            return (await surface.text_of(origin[0]) == trip.origin
                    and await surface.text_of(destination[0]) == trip.destination)

        await self._click_required(surface, "trip_rows", matches_trip, f"route {trip.origin} -> {trip.destination}")
        logger.info("trip selected: %s -> %s", trip.origin, trip.destination)

    async def select_date(self, surface, attempts: int = DATE_PICKER_ATTEMPTS) -> None:
        target = self.profile.date

        async def open_picker(n: int) -> None:
            await self._click_required(surface, "date_input", visible, "date field")
            await self._wait_for(surface, "calendar", "date picker", timeout=min(self.wait_timeout, 3.0))

        await with_retries(open_picker, attempts, self.backoff, "open date picker")

        headers = await surface.query_all(SELECTORS["calendar_header"])
        if not headers:
            raise ElementNotFound(SELECTORS["calendar_header"], "calendar month")
        if target_month_differs(await surface.text_of(headers[0]), target):
            await self._click_required(surface, "calendar_next", visible, "next month")

        # The picker keeps hidden duplicate day cells; only rendered ones count.
        await self._click_required(surface, "calendar_days", has_text(str(target.day)), f"day {target.day}")
        logger.info("date selected: %s", target.isoformat())

    async def select_session(self, surface) -> None:
        period = self.profile.session_period
        await self._wait_for(surface, "session_tabs", "session tabs")
        await self._click_required(
            surface, "session_tabs", has_text(TEXTS["sessions"][period.value], exact=False),
            f"{period.value} session",
        )
        await self._wait_for(surface, "time_slots", "time slots")

        candidates = []
        for handle in await surface.query_all(SELECTORS["time_slots"]):
            if await surface.is_rendered(handle):
                candidates.append(parse_candidate(await surface.text_of(handle)))
        chosen = choose_time_slot(candidates, self.profile.time_slots, self.profile.ticket_count)

        # The slot control ignores element activation; click its centre.
        async def is_chosen(surface, handle) -> bool:
            if not await surface.is_rendered(handle):
                return False
            return parse_candidate(await surface.text_of(handle)).label == chosen.label

        if not await find_and_act(surface, SELECTORS["time_slots"], is_chosen, click_center):
            raise ElementNotFound(SELECTORS["time_slots"], f"slot {chosen.label}")
        await asyncio.sleep(self.settle)
        logger.info("time slot selected: %s (%d seats)", chosen.label, chosen.seats_available)

    # -- tickets -------------------------------------------------------------

    async def set_ticket_counts(self, surface) -> None:
        await self._wait_for(surface, "ticket_rows", "ticket counters")

        rows = await surface.query_all(SELECTORS["ticket_rows"])
        for index in range(len(rows)):
            row = await self._row(surface, index)
            if row is None or not await surface.is_rendered(row):
                continue
            labels = await surface.query_all(SELECTORS["ticket_label"], within=row)
            category = category_of(await surface.text_of(labels[0])) if labels else None
            if category is None:
                continue

            requested = self.profile.count_for(category)
            decrements, increments = counter_clicks(category, requested)
            for _ in range(decrements):
                await self._press_counter(surface, index, "ticket_minus")
            for _ in range(increments):
                await self._press_counter(surface, index, "ticket_plus")
            logger.info("%s tickets: %d", category.value, requested)

    async def _row(self, surface, index: int):
        rows = await surface.query_all(SELECTORS["ticket_rows"])
        return rows[index] if index < len(rows) else None

    async def _press_counter(self, surface, index: int, button_key: str) -> None:
        # Fresh lookup for every press; a stale button would double-count.
        row = await self._row(surface, index)
        buttons = await surface.query_all(SELECTORS[button_key], within=row) if row else []
        if not buttons:
            raise ElementNotFound(SELECTORS[button_key], f"ticket row {index}")
        await surface.click(buttons[0])
        await asyncio.sleep(self.settle)

    async def fill_passengers(self, surface) -> None:
        if not any(t.passenger for t in self.profile.tickets):
            return
        await self._wait_for(surface, "passenger_rows", "passenger form")

        rows = [r for r in await surface.query_all(SELECTORS["passenger_rows"]) if await surface.is_rendered(r)]
        categories = []
        for row in rows:
            labels = await surface.query_all(SELECTORS["passenger_category"], within=row)
            categories.append(category_of(await surface.text_of(labels[0])) if labels else None)

        for row, category, passenger in zip(rows, categories, pair_passengers(categories, self.profile)):
            if passenger is None:
                logger.warning("no passenger details left for a %s row", category.value if category else "unknown")
                continue
            for selector_key, value in (("passenger_name", passenger.name),
                                        ("passenger_id", passenger.identity_number)):
                inputs = await surface.query_all(SELECTORS[selector_key], within=row)
                if not inputs:
                    raise ElementNotFound(SELECTORS[selector_key], "passenger row")
                await surface.type_text(inputs[0], value)
            logger.info("passenger filled: %s (%s)", passenger.name, category.value)

    async def accept_terms(self, surface) -> None:
        await self._wait_for(surface, "terms_checkbox", "terms checkbox")

        async def unchecked(surface, handle) -> bool:
            return await surface.is_rendered(handle) and not await surface.is_checked(handle)

        await find_and_act(surface, SELECTORS["terms_checkbox"], unchecked, click)
        await wait_until(checked(surface, SELECTORS["terms_checkbox"]), "terms accepted", self.wait_timeout)

    async def solve_challenge_and_submit(self, surface) -> None:
        if self.coordinator is None:
            raise BookingError("no challenge solver configured")
        await self.coordinator.run(surface)
