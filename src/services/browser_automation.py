"""
Browser-Automation für Unsubscribe-Links (Playwright, sync API)

Ablauf (run_unsubscribe_flow), jede Phase kann das Ergebnis festlegen:
═══════════════════════════════════════════════════════════════════════════
1. Navigation (Timeout wird toleriert) + kurze Wartezeit
2. Seite meldet bereits "unsubscribed"          → success
3. CAPTCHA erkannt                               → failed (manuell)
4. Login-Wall erkannt                            → failed (manuell)
5. Formular vorbereiten (best effort, Fehler werden verschluckt)
6. Strategie-Tabelle: erstes sichtbares Control klicken, ggf. bestätigen
7. Kein Control: Erfolgsphrasen erneut prüfen    → success / failed
═══════════════════════════════════════════════════════════════════════════

Die Phasen arbeiten gegen PageDriver/ElementDriver, nicht direkt gegen
Playwright. PlaywrightPage/PlaywrightElement sind die Adapter für den echten
Browser, Tests nutzen Fakes.
"""

import logging
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from email.utils import parseaddr
from typing import Iterator, List, Optional, Pattern, Sequence, Tuple

from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

NOTE_CAPTCHA = "manual intervention required (captcha detected)"
NOTE_LOGIN = "manual intervention required (login required)"
NOTE_NO_CONTROL = "no control found"

SUCCESS_PHRASES = (
    "successfully unsubscribed",
    "you have been unsubscribed",
    "you've been unsubscribed",
    "you are now unsubscribed",
    "already unsubscribed",
    "removed from list",
    "removed from our mailing list",
    "unsubscribe successful",
    "you will no longer receive",
)

CAPTCHA_SELECTORS = (
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    'iframe[src*="challenges.cloudflare.com"]',
    'iframe[title*="captcha" i]',
    ".g-recaptcha",
    ".h-captcha",
    ".cf-turnstile",
    '[class*="captcha" i]',
    '[id*="captcha" i]',
)

PASSWORD_SELECTOR = 'input[type="password"]'
BUTTON_SELECTOR = 'button, input[type="submit"], input[type="button"], [role="button"]'
CLICKABLE_SELECTOR = f"{BUTTON_SELECTOR}, a"

LOGIN_TEXT = re.compile(r"^\s*(log\s*-?\s*in|sign\s*-?\s*in)\b", re.IGNORECASE)
UNSUBSCRIBE_ALL = re.compile(r"unsubscribe\s+(me\s+)?from\s+all|opt\s*-?\s*out\s+of\s+all", re.IGNORECASE)
REASON_FIELD = re.compile(r"reason|why|feedback", re.IGNORECASE)
PLACEHOLDER_OPTION = re.compile(r"^\s*$|select|choose|please|^-+", re.IGNORECASE)
SUBSCRIPTION_PREFERENCE = re.compile(
    r"newsletter|subscri|updates|offers|promotion|marketing|e-?mails?|digest", re.IGNORECASE
)
CONFIRMATION_CHECKBOX = re.compile(
    r"confirm|i understand|i agree|unsubscribe from all|opt\s*-?\s*out", re.IGNORECASE
)


class ElementDriver(ABC):
    """Minimale Element-Schnittstelle für die Phasen"""

    @abstractmethod
    def is_visible(self) -> bool: ...

    @abstractmethod
    def text(self) -> str: ...

    @abstractmethod
    def get_attribute(self, name: str) -> Optional[str]: ...

    @abstractmethod
    def click(self) -> None: ...

    def input_value(self) -> str:
        return self.get_attribute("value") or ""

    def is_checked(self) -> bool:
        return False

    def fill(self, value: str) -> None:
        raise NotImplementedError

    def check(self) -> None:
        raise NotImplementedError

    def uncheck(self) -> None:
        raise NotImplementedError

    def label_text(self) -> str:
        return ""

    def option_items(self) -> List[Tuple[str, str]]:
        """(value, label) der <option>-Einträge"""
        return []

    def select_option(self, value: str) -> None:
        raise NotImplementedError


class PageDriver(ABC):
    """Minimale Seiten-Schnittstelle für die Phasen"""

    @abstractmethod
    def goto(self, url: str, timeout_ms: int) -> None: ...

    @abstractmethod
    def wait_for_timeout(self, ms: int) -> None: ...

    @abstractmethod
    def text_content(self) -> str: ...

    @abstractmethod
    def query_all(self, selector: str) -> Sequence[ElementDriver]: ...

    @abstractmethod
    def is_closed(self) -> bool: ...

    def count(self, selector: str) -> int:
        return len(self.query_all(selector))

    def screenshot(self, path: str) -> None:
        raise NotImplementedError


def _element_label(element: ElementDriver) -> str:
    """Sichtbarer Text, sonst value/aria-label (für <input type=submit>)"""
    text = (element.text() or "").strip()
    if text:
        return text
    return (element.get_attribute("value") or element.get_attribute("aria-label") or "").strip()


@dataclass(frozen=True)
class ControlStrategy:
    """Ein Eintrag der Strategie-Tabelle: Selektor + Text-/Attribut-Muster.

    Ohne Muster trifft jedes sichtbare Element des Selektors.
    """

    name: str
    selector: str
    text: Optional[Pattern] = None
    attributes: Tuple[Tuple[str, Pattern], ...] = field(default_factory=tuple)

    def matches(self, element: ElementDriver) -> bool:
        if self.text is None and not self.attributes:
            return True
        if self.text is not None and self.text.search(_element_label(element)):
            return True
        for attribute, pattern in self.attributes:
            value = element.get_attribute(attribute)
            if value and pattern.search(value):
                return True
        return False


def _rx(pattern: str) -> Pattern:
    return re.compile(pattern, re.IGNORECASE)


# Reihenfolge = Priorität (spezifisch vor generisch)
UNSUBSCRIBE_STRATEGIES: Tuple[ControlStrategy, ...] = (
    ControlStrategy("unsubscribe from all", CLICKABLE_SELECTOR, text=UNSUBSCRIBE_ALL),
    ControlStrategy("unsubscribe button", BUTTON_SELECTOR, text=_rx(r"unsubscribe")),
    ControlStrategy("unsubscribe link", "a", text=_rx(r"unsubscribe")),
    ControlStrategy("opt out", CLICKABLE_SELECTOR, text=_rx(r"opt\s*-?\s*out")),
    ControlStrategy("remove me", CLICKABLE_SELECTOR, text=_rx(r"remove\s+(me|from\s+list)")),
    ControlStrategy(
        "unsubscribe attribute",
        CLICKABLE_SELECTOR,
        attributes=(("class", _rx("unsubscribe")), ("id", _rx("unsubscribe"))),
    ),
    ControlStrategy("confirm", BUTTON_SELECTOR, text=_rx(r"^\s*confirm")),
    ControlStrategy("yes", BUTTON_SELECTOR, text=_rx(r"^\s*yes\b")),
    ControlStrategy("submit button", "button", text=_rx(r"submit")),
    ControlStrategy("submit input", 'input[type="submit"]'),
)

CONFIRMATION_STRATEGIES: Tuple[ControlStrategy, ...] = (
    ControlStrategy("confirm", BUTTON_SELECTOR, text=_rx(r"confirm")),
    ControlStrategy("yes", BUTTON_SELECTOR, text=_rx(r"^\s*yes\b")),
    ControlStrategy("submit", 'input[type="submit"]'),
)


@dataclass(frozen=True)
class BrowserTiming:
    launch_timeout_ms: int = 60_000
    default_timeout_ms: int = 45_000
    navigation_timeout_ms: int = 45_000
    goto_timeout_ms: int = 30_000
    settle_ms: int = 2_000
    viewport: Tuple[int, int] = (1280, 720)
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )


@dataclass
class FlowResult:
    status: str
    notes: str
    phase: str = ""


def is_target_closed_error(exc: Exception) -> bool:
    """Playwright meldet geschlossene Seiten als 'Target ... closed'"""
    message = str(exc).lower()
    return "closed" in message and ("target" in message or "page" in message)


def _page_text(page: PageDriver) -> str:
    try:
        return (page.text_content() or "").lower()
    except Exception as e:
        logger.debug(f"Seitentext nicht lesbar: {type(e).__name__}")
        return ""


def find_success_phrase(page: PageDriver) -> Optional[str]:
    text = _page_text(page)
    for phrase in SUCCESS_PHRASES:
        if phrase in text:
            return phrase
    return None


def detect_captcha(page: PageDriver) -> Optional[str]:
    for selector in CAPTCHA_SELECTORS:
        try:
            if page.count(selector) > 0:
                return selector
        except Exception as e:
            logger.debug(f"CAPTCHA-Check {selector} fehlgeschlagen: {type(e).__name__}")
    return None


def _visible(elements: Sequence[ElementDriver]) -> Iterator[ElementDriver]:
    for element in elements:
        try:
            if element.is_visible():
                yield element
        except Exception as e:
            logger.debug(f"Sichtbarkeit nicht prüfbar: {type(e).__name__}")


def detect_login_wall(page: PageDriver) -> bool:
    if any(True for _ in _visible(page.query_all(PASSWORD_SELECTOR))):
        return True
    for element in _visible(page.query_all(BUTTON_SELECTOR)):
        if LOGIN_TEXT.search(_element_label(element)):
            return True
    return False


def _best_effort(step: str, func, *args) -> int:
    try:
        return func(*args)
    except Exception as e:
        logger.debug(f"Formular-Schritt '{step}' übersprungen: {type(e).__name__}")
        return 0


def _fill_email_inputs(page: PageDriver, address: str) -> int:
    if not address:
        return 0
    filled = 0
    for element in _visible(page.query_all('input[type="email"], input[name*="email" i]')):
        if not (element.input_value() or "").strip():
            element.fill(address)
            filled += 1
    return filled


def _choose_reasons(page: PageDriver) -> int:
    chosen = 0
    for element in _visible(page.query_all("select")):
        name = f"{element.get_attribute('name') or ''} {element.get_attribute('id') or ''}"
        if not REASON_FIELD.search(name) and not REASON_FIELD.search(element.label_text()):
            continue
        for value, label in element.option_items():
            if value and not PLACEHOLDER_OPTION.search(label or ""):
                element.select_option(value)
                chosen += 1
                break
    return chosen


def _select_unsubscribe_all_radio(page: PageDriver) -> int:
    for element in page.query_all('input[type="radio"]'):
        candidate = f"{element.label_text()} {element.get_attribute('value') or ''}"
        if UNSUBSCRIBE_ALL.search(candidate):
            element.check()
            return 1
    return 0


def _adjust_checkboxes(page: PageDriver) -> int:
    changed = 0
    for element in page.query_all('input[type="checkbox"]'):
        label = f"{element.label_text()} {element.get_attribute('name') or ''}"
        checked = element.is_checked()
        if CONFIRMATION_CHECKBOX.search(label):
            if not checked:
                element.check()
                changed += 1
        elif SUBSCRIPTION_PREFERENCE.search(label) and checked:
            element.uncheck()
            changed += 1
    return changed


def _switch_off_toggles(page: PageDriver) -> int:
    switched = 0
    for element in _visible(page.query_all('[role="switch"][aria-checked="true"]')):
        element.click()
        switched += 1
    return switched


def prepare_form(page: PageDriver, sender: Optional[str]) -> int:
    """Best-effort Formularvorbereitung; liefert Anzahl geänderter Controls"""
    address = parseaddr(sender or "")[1]
    steps = (
        ("email", _fill_email_inputs, page, address),
        ("reason", _choose_reasons, page),
        ("radio", _select_unsubscribe_all_radio, page),
        ("checkbox", _adjust_checkboxes, page),
        ("toggle", _switch_off_toggles, page),
    )
    return sum(_best_effort(step, func, *args) for step, func, *args in steps)


def find_control(
    page: PageDriver, strategies: Sequence[ControlStrategy]
) -> Optional[Tuple[ControlStrategy, ElementDriver]]:
    """Erstes sichtbares Element der ersten passenden Strategie"""
    for strategy in strategies:
        try:
            elements = page.query_all(strategy.selector)
        except Exception as e:
            logger.debug(f"Selektor {strategy.selector!r} fehlgeschlagen: {type(e).__name__}")
            continue
        for element in _visible(elements):
            try:
                if strategy.matches(element):
                    return strategy, element
            except Exception as e:
                logger.debug(f"Strategie {strategy.name} nicht prüfbar: {type(e).__name__}")
    return None


def _click(page: PageDriver, element: ElementDriver) -> bool:
    """Klickt; True wenn die Seite danach geschlossen ist"""
    try:
        element.click()
    except Exception as e:
        if is_target_closed_error(e):
            return True
        raise
    return page.is_closed()


def _confirm(page: PageDriver, timing: BrowserTiming) -> Optional[str]:
    match = find_control(page, CONFIRMATION_STRATEGIES)
    if match is None:
        return None
    strategy, element = match
    logger.info(f"🔘 Bestätigung: {strategy.name}")
    if _click(page, element):
        return strategy.name
    page.wait_for_timeout(timing.settle_ms)
    return strategy.name


def run_unsubscribe_flow(
    page: PageDriver,
    url: str,
    sender: Optional[str] = None,
    timing: Optional[BrowserTiming] = None,
) -> FlowResult:
    timing = timing or BrowserTiming()

    # 1. Navigation
    try:
        page.goto(url, timing.goto_timeout_ms)
    except Exception as e:
        logger.info(f"ℹ️ Navigation unvollständig ({type(e).__name__}), fahre fort")
    page.wait_for_timeout(timing.settle_ms)

    # 2. bereits abgemeldet
    phrase = find_success_phrase(page)
    if phrase:
        return FlowResult(STATUS_SUCCESS, f'Already unsubscribed. Found: "{phrase}"', "success-scan")

    # 3. CAPTCHA
    captcha = detect_captcha(page)
    if captcha:
        logger.warning(f"⚠️ CAPTCHA erkannt ({captcha})")
        return FlowResult(STATUS_FAILED, NOTE_CAPTCHA, "captcha")

    # 4. Login-Wall
    if detect_login_wall(page):
        logger.warning("⚠️ Login-Wall erkannt")
        return FlowResult(STATUS_FAILED, NOTE_LOGIN, "login")

    # 5. Formular
    prepared = prepare_form(page, sender)
    if prepared:
        logger.debug(f"Formular vorbereitet: {prepared} Controls")

    # 6. Control klicken
    for strategy in UNSUBSCRIBE_STRATEGIES:
        match = find_control(page, (strategy,))
        if match is None:
            continue
        _, element = match
        label = _element_label(element)[:80]
        logger.info(f"🔘 Klicke '{strategy.name}' ({label})")
        try:
            closed = _click(page, element)
        except Exception as e:
            logger.debug(f"Klick auf '{strategy.name}' fehlgeschlagen: {type(e).__name__}")
            continue

        notes = f"Clicked: {strategy.name} ({label})"
        if closed:
            return FlowResult(STATUS_SUCCESS, f"{notes}; page closed", "click")

        page.wait_for_timeout(timing.settle_ms)
        try:
            confirmation = _confirm(page, timing)
        except Exception as e:
            logger.debug(f"Bestätigung fehlgeschlagen: {type(e).__name__}")
            confirmation = None
        if confirmation:
            notes = f"{notes}; confirmed: {confirmation}"
        return FlowResult(STATUS_SUCCESS, notes, "click")

    # 7. letzter Text-Scan
    phrase = find_success_phrase(page)
    if phrase:
        return FlowResult(STATUS_SUCCESS, f'Auto-unsubscribed. Found: "{phrase}"', "success-rescan")
    return FlowResult(STATUS_FAILED, NOTE_NO_CONTROL, "no-control")


# ---------------------------------------------------------------------------
# Playwright-Adapter
# ---------------------------------------------------------------------------

_LABEL_JS = """el => {
    const labels = el.labels ? Array.from(el.labels).map(l => l.innerText) : [];
    return labels.join(' ') || el.getAttribute('aria-label') || '';
}"""
_OPTIONS_JS = "el => Array.from(el.options).map(o => [o.value, o.text])"


class PlaywrightElement(ElementDriver):
    def __init__(self, locator):
        self.locator = locator

    def is_visible(self) -> bool:
        return self.locator.is_visible()

    def text(self) -> str:
        return self.locator.text_content() or ""

    def get_attribute(self, name: str) -> Optional[str]:
        return self.locator.get_attribute(name)

    def click(self) -> None:
        self.locator.click()

    def input_value(self) -> str:
        return self.locator.input_value()

    def is_checked(self) -> bool:
        return self.locator.is_checked()

    def fill(self, value: str) -> None:
        self.locator.fill(value)

    def check(self) -> None:
        self.locator.check()

    def uncheck(self) -> None:
        self.locator.uncheck()

    def label_text(self) -> str:
        return self.locator.evaluate(_LABEL_JS) or ""

    def option_items(self) -> List[Tuple[str, str]]:
        return [tuple(item) for item in self.locator.evaluate(_OPTIONS_JS)]

    def select_option(self, value: str) -> None:
        self.locator.select_option(value=value)


class PlaywrightPage(PageDriver):
    def __init__(self, page):
        self.page = page

    def goto(self, url: str, timeout_ms: int) -> None:
        self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    def wait_for_timeout(self, ms: int) -> None:
        if not self.page.is_closed():
            self.page.wait_for_timeout(ms)

    def text_content(self) -> str:
        return self.page.inner_text("body")

    def query_all(self, selector: str) -> List[ElementDriver]:
        return [PlaywrightElement(loc) for loc in self.page.locator(selector).all()]

    def count(self, selector: str) -> int:
        return self.page.locator(selector).count()

    def is_closed(self) -> bool:
        return self.page.is_closed()

    def screenshot(self, path: str) -> None:
        self.page.screenshot(path=path, full_page=True)


@contextmanager
def launch_browser_session(headless: bool = True, timing: Optional[BrowserTiming] = None):
    """Isolierte Chromium-Session (eigener Context); Teardown immer im finally"""
    timing = timing or BrowserTiming()
    with sync_playwright() as playwright:
        browser = playwright.chromium.launch(headless=headless, timeout=timing.launch_timeout_ms)
        try:
            width, height = timing.viewport
            context = browser.new_context(
                viewport={"width": width, "height": height},
                user_agent=timing.user_agent,
            )
            page = context.new_page()
            page.set_default_timeout(timing.default_timeout_ms)
            page.set_default_navigation_timeout(timing.navigation_timeout_ms)
            yield PlaywrightPage(page)
        finally:
            try:
                browser.close()
                logger.debug("Browser geschlossen")
            except Exception as e:
                logger.warning(f"⚠️ Browser konnte nicht geschlossen werden: {type(e).__name__}")
