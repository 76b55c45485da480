"""Sense Layer - Document tree access, locators and their synthesis/resolution."""

from pagepatch.layers.sense.document import Document, InteractionEvent, MutationRecord, ShadowRoot
from pagepatch.layers.sense.locator import CssLocator, ShadowLocator, XPathLocator, parse_locator
from pagepatch.layers.sense.resolver import LocatorResolver
from pagepatch.layers.sense.synthesizer import LocatorSynthesizer

__all__ = [
    "CssLocator",
    "Document",
    "InteractionEvent",
    "LocatorResolver",
    "LocatorSynthesizer",
    "MutationRecord",
    "ShadowLocator",
    "ShadowRoot",
    "XPathLocator",
    "parse_locator",
]
