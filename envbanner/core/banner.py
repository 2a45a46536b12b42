"""
envbanner Banner
=================
Builds the markup spliced into every HTML page.

The snippet is a ``<template>`` whose style and content are moved into a
shadow root attached to a host ``<span>``, so page CSS and banner CSS never
see each other. Clicking the glyph removes the host element.

The color is pasted into a CSS value as-is; callers are responsible for
passing a sane CSS color token.
"""

from __future__ import annotations

import html

BANNER_TEMPLATE = """<template class="enbanner-template">
\t<style>
\tdiv {
\t\tbackground-color: %(color)s;
\t\tcolor: white;
\t\tposition: absolute;
\t\ttop: calc(-20px / sqrt(2));
\t\tleft: calc(-1 * (120px - 120px / sqrt(2)) - 20px / sqrt(2));
\t\tz-index: 32767;
\t\ttransform: rotate(-45deg);
\t\twidth: 120px;
\t\ttext-align: center;
\t\tline-height: 20px;
\t\tfont-size: 12px;
\t\ttransform-origin: top right;
\t}
\tb {
\t\topacity: 0.8;
\t\tcursor: pointer;
\t}
\t</style>
\t<div>%(message)s <b>\U0001f7aa</b></div>
</template>
<span class="enbanner-host"></span>
<script>
\tconst host = document.querySelector('.enbanner-host');
\tconst shadow = host.attachShadow({ mode: 'open' });
\tconst template = document.querySelector('.enbanner-template');
\tshadow.appendChild(template.content);
\tshadow.querySelector('b').addEventListener('click', () => host.remove());
</script>"""


def build_banner(message: str, color: str) -> bytes:
    """Render the banner for *message* painted in *color*, as UTF-8 bytes."""
    return (BANNER_TEMPLATE % {
        "color": color,
        "message": html.escape(message),
    }).encode("utf-8")
