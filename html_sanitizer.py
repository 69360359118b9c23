"""
HTML sanitising for rendered post bodies, plus reading-time helpers.
"""
import math
import re
from functools import partial

import bleach
from bleach.sanitizer import Cleaner
from bleach.css_sanitizer import CSSSanitizer
from bleach.linkifier import LinkifyFilter

ALLOWED_TAGS = [
    'p', 'h1', 'h2', 'h3', 'strong', 'b', 'em', 'i', 'u', 's',
    'a', 'ul', 'ol', 'li', 'blockquote', 'code', 'pre',
    'img', 'figure', 'figcaption', 'br', 'hr', 'span',
]

ALLOWED_CLASSES = {'align-left', 'align-center', 'align-right'}

# data: URIs are only accepted on <img src>
ALLOWED_PROTOCOLS = ['http', 'https', 'mailto', 'data']

WORDS_PER_MINUTE = 200

# LinkifyFilter is only used to post-process existing <a> tags
_NEVER_MATCH = re.compile(r'(?!x)x')

_css_sanitizer = CSSSanitizer(allowed_css_properties=['text-align'])


def _allow_attribute(tag: str, name: str, value: str) -> bool:
    if name == 'class':
        classes = value.split()
        return bool(classes) and all(c in ALLOWED_CLASSES for c in classes)
    if name == 'style':
        return True
    if tag == 'a':
        if name == 'href':
            return not value.strip().lower().startswith('data:')
        return name in ('title', 'target', 'rel')
    if tag == 'img':
        return name in ('src', 'alt', 'title', 'width', 'height')
    return False


def _secure_blank_targets(attrs, new=False):
    target = attrs.get((None, 'target'))
    if target == '_blank':
        rel = set((attrs.get((None, 'rel')) or '').split())
        rel.update({'noopener', 'noreferrer'})
        attrs[(None, 'rel')] = ' '.join(sorted(rel))
    return attrs


_cleaner = Cleaner(
    tags=ALLOWED_TAGS,
    attributes=_allow_attribute,
    protocols=ALLOWED_PROTOCOLS,
    css_sanitizer=_css_sanitizer,
    strip=True,
    filters=[
        partial(
            LinkifyFilter,
            callbacks=[_secure_blank_targets],
            url_re=_NEVER_MATCH,
            parse_email=False,
        )
    ],
)


def sanitize_html(html_content):
    if not html_content:
        return ""
    return _cleaner.clean(html_content)


def extract_text_from_html(html_content):
    """Strip all tags and collapse whitespace"""
    if not html_content:
        return ""
    text = bleach.clean(html_content, tags=[], attributes={}, strip=True)
    return re.sub(r'\s+', ' ', text).strip()


def calculate_reading_time(text, words_per_minute=WORDS_PER_MINUTE):
    """Minutes to read `text`; 0 for empty input, otherwise at least 1"""
    if not text or not isinstance(text, str):
        return 0
    words = len(text.split())
    if words == 0:
        return 0
    return max(1, math.ceil(words / words_per_minute))
