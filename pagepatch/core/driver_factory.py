"""
Driver Factory - WebDriver creation and live page capture.

Captures the live DOM of a page, open shadow roots included, into a
Document the engine can work on offline.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from selenium import webdriver
from selenium.webdriver.chrome.options import Options as ChromeOptions

from pagepatch.layers.sense.document import Document

# Type alias for driver
WebDriverType = webdriver.Chrome


# Serializes the DOM, re-emitting open shadow roots as declarative templates
SERIALIZE_SCRIPT = r"""
const VOID = new Set(["area", "base", "br", "col", "embed", "hr", "img", "input",
                      "link", "meta", "source", "track", "wbr"]);
const RAW = new Set(["script", "style"]);
const text = (s) => s.replace(/&/g, "&amp;").replace(/</g, "&lt;").replace(/>/g, "&gt;");
const attr = (s) => s.replace(/&/g, "&amp;").replace(/"/g, "&quot;");

function children(parent) {
  let out = "";
  for (const child of parent.childNodes) out += serialize(child);
  return out;
}

function serialize(node) {
  if (node.nodeType === Node.TEXT_NODE) {
    const parent = node.parentNode;
    return parent && RAW.has(parent.localName) ? node.data : text(node.data);
  }
  if (node.nodeType === Node.COMMENT_NODE) return "<!--" + node.data + "-->";
  if (node.nodeType !== Node.ELEMENT_NODE) return "";

  const tag = node.localName;
  let out = "<" + tag;
  for (const a of node.attributes) out += " " + a.name + '="' + attr(a.value) + '"';
  out += ">";
  if (VOID.has(tag)) return out;

  if (node.shadowRoot) {
    out += '<template shadowrootmode="' + node.shadowRoot.mode + '">'
        + children(node.shadowRoot) + "</template>";
  }
  out += children(tag === "template" ? node.content : node);
  return out + "</" + tag + ">";
}

return "<!DOCTYPE html>" + serialize(document.documentElement);
"""


def create_driver(
    headless: bool = True,
    profile_path: Optional[str] = None,
    window_size: str = "1920,1080",
) -> WebDriverType:
    """
    Create a Chrome WebDriver.

    Args:
        headless: Run browser in headless mode
        profile_path: Path to browser profile for session persistence
        window_size: Viewport as "width,height"

    Returns:
        Chrome WebDriver instance

    Example:
        >>> driver = create_driver(headless=True)
        >>> driver.get("https://example.com")
    """
    options = ChromeOptions()

    if headless:
        options.add_argument("--headless=new")

    if profile_path:
        options.add_argument(f"--user-data-dir={profile_path}")

    # Common stability options
    options.add_argument("--disable-extensions")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--disable-gpu")
    options.add_argument(f"--window-size={window_size}")

    return webdriver.Chrome(options=options)


@contextmanager
def browser_session(headless: bool = True, profile_path: Optional[str] = None) -> Iterator[WebDriverType]:
    """
    Driver that is always quit on exit.

    Example:
        >>> with browser_session() as driver:
        ...     driver.get("https://example.com")
        ...     document = capture_document(driver)
    """
    driver = create_driver(headless=headless, profile_path=profile_path)
    try:
        yield driver
    finally:
        driver.quit()


def capture_document(driver: WebDriverType) -> Document:
    """
    Snapshot the driver's current page as a Document.

    Open shadow roots are captured; closed ones are invisible to scripts
    and therefore missing from the snapshot.
    """
    markup = driver.execute_script(SERIALIZE_SCRIPT)
    return Document.from_html(markup, address=driver.current_url)
