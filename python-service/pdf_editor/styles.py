import re
from collections import OrderedDict

from bs4 import BeautifulSoup

# ============ Inline CSS helpers ============

def parse_style(style_str: str):
    style_dict = OrderedDict()
    for part in (style_str or "").split(";"):
        if ":" in part:
            k, v = part.split(":", 1)
            style_dict[k.strip().lower()] = v.strip()
    return style_dict

def format_style(style_dict) -> str:
    return " ".join(f"{k}: {v};" for k, v in style_dict.items())

def update_style(tag, **props):
    """Set inline CSS properties on a bs4 tag; underscores become dashes."""
    style = parse_style(tag.get("style", ""))
    for k, v in props.items():
        k = k.replace("_", "-")
        if v is None: style.pop(k, None)
        else: style[k] = v
    tag["style"] = format_style(style)

def px(v, d=None):
    if v is None: return d
    try: return float(re.sub(r"px\s*$", "", str(v).strip()))
    except (TypeError, ValueError): return d

def is_absolute(tag) -> bool:
    return parse_style(tag.get("style", "")).get("position", "").lower() in ("absolute", "fixed")


# ============ Fragments ============

def parse_fragment(html_str: str):
    """Parse an HTML fragment; returns the soup and the element holding it."""
    soup = BeautifulSoup(html_str or "", "lxml")
    return soup, (soup.body or soup)

def inner_html(tag) -> str:
    return "".join(str(c) for c in tag.contents)

def page_blocks(root):
    return root.select("div.pdf-page")
