"""Clean scraped chapter HTML so it can be embedded in XHTML.

Applied the same way to chapter content and to both author's notes.
The output is what BeautifulSoup (html.parser) serialises: void tags
self-closed, attributes double-quoted, named entities turned into
characters. Reading a chapter back from an EPUB yields the same string, and
running ``sanitize`` twice gives the same result as running it once.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

# Inserted by the source site into chapter bodies to watermark copies.
# Please don't use this tool to re-publish authors' works without their permission.
THEFT_MESSAGES = (
    "A case of content theft: this narrative is not rightfully on Amazon; if you spot it, report the violation.",
    "Did you know this story is from Royal Road? Read the official version for free and support the author.",
    "Enjoying this book? Seek out the original to ensure the author gets credit.",
    "Find this and other great novels on the author's preferred platform. Support original creators!",
    "Help support creative writers by finding and reading their stories on the original site.",
    "If you come across this story on Amazon, be aware that it has been stolen from Royal Road. Please report it.",
    "If you discover this narrative on Amazon, be aware that it has been unlawfully taken from Royal Road. Please report it.",
    "If you encounter this narrative on Amazon, note that it's taken without the author's consent. Report it.",
    "If you encounter this story on Amazon, note that it's taken without permission from the author. Report it.",
    "If you spot this narrative on Amazon, know that it has been stolen. Report the violation.",
    "If you stumble upon this narrative on Amazon, it's taken without the author's consent. Report it.",
    "Love what you're reading? Discover and support the author on the platform they originally published on.",
    "Royal Road is the home of this novel. Visit there to read the original and support the author.",
    "Stolen content alert: this content belongs on Royal Road. Report any occurrences.",
    "The author's content has been appropriated; report any instances of this story on Amazon.",
    "The author's tale has been misappropriated; if you spot it on Amazon, report the violation.",
    "The narrative has been illicitly obtained; should you discover it on Amazon, report the violation.",
    "The narrative has been stolen; if detected on Amazon, report the infringement.",
    "This book's true home is on another platform. Check it out there for the real experience.",
    "This content has been misappropriated from Royal Road; report any instances of this story if found elsewhere.",
    "This content has been unlawfully taken from Royal Road; report any instances of this story if found elsewhere.",
    "This narrative has been purloined without the author's approval. Report any appearances on Amazon.",
    "This novel is published on a different platform. Support the original author by finding the official source.",
    "This story has been stolen from Royal Road. If you read it on Amazon, please report it",
    "This story has been taken without authorization. Report any sightings.",
    "This story has been unlawfully obtained without the author's consent. Report any appearances on Amazon.",
    "This story originates from a different website. Ensure the author gets the support they deserve by reading it there.",
    "This tale has been pilfered from Royal Road. If found on Amazon, kindly file a report.",
    "This tale has been unlawfully lifted from Royal Road. If you spot it on Amazon, please report it.",
    "This tale has been unlawfully lifted without the author's consent. Report any appearances on Amazon.",
    "This tale has been unlawfully obtained from Royal Road. If you discover it on Amazon, kindly report it.",
    "Unauthorized duplication: this narrative has been taken without consent. Report sightings.",
    "Unauthorized reproduction: this story has been taken without approval. Report sightings.",
    "Unauthorized tale usage: if you spot this story on Amazon, report the violation.",
    "Unauthorized usage: this tale is on Amazon without the author's consent. Report any sightings.",
    "You could be reading stolen content. Head to Royal Road for the genuine story.",
    "You might be reading a pirated copy. Look for the official release to support the author.",
    "You might be reading a stolen copy. Visit Royal Road for the authentic version.",
)

FONT_FAMILY = re.compile(r'\s*font-family:[^;"]*(?:;\s*|("))')
FONT_FAMILY_TRAILING = re.compile(r'font-family:[^;"]*"')
FONT_WEIGHT = re.compile(r"font-weight:\s?(?:normal|400)")
CLASS_ATTRIBUTE = re.compile(r' class="[^"]*"')
EMPTY_PARAGRAPH = re.compile(r"<p(?:\s[^>]*)?>\s*</p>")
OVERFLOW_AUTO = re.compile(r"overflow:\s?auto")


def remove_theft_messages(html: str) -> str:
    for message in THEFT_MESSAGES:
        html = html.replace(message, "")
    return html


def normalize(html: str) -> str:
    return BeautifulSoup(html, "html.parser").decode_contents()


def sanitize(html: str) -> str:
    content = remove_theft_messages(normalize(html))

    # font-family: *; anywhere in a style attribute
    content = FONT_FAMILY.sub(r"\1", content)
    content = FONT_FAMILY_TRAILING.sub('"', content)

    content = FONT_WEIGHT.sub("", content)

    # class names carry per-render fingerprints
    content = CLASS_ATTRIBUTE.sub("", content)

    content = content.replace("\xa0", " ")
    content = EMPTY_PARAGRAPH.sub("", content)

    content = OVERFLOW_AUTO.sub("", content)
    return normalize(content)
