# outputs.py

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple

from errors import NoOutputFormatsError, UnknownOutputFormatError
from models import OutputFormat, OutputKind, PageKind, SiteConfig

logger = logging.getLogger(__name__)

HYPERTEXT_FORMAT = 'HTML'

# 未在 outputs 中配置的页面类型使用的默认格式
DEFAULT_KIND_OUTPUTS = {
    PageKind.HOME: ('HTML', 'RSS'),
    PageKind.LIST: ('HTML', 'RSS'),
    PageKind.SINGLE: ('HTML',),
    PageKind.TAXONOMY: ('HTML', 'RSS'),
    PageKind.TERM: ('HTML', 'RSS'),
}


def enabled_page_kinds(site: SiteConfig) -> Tuple[PageKind, ...]:
    return tuple(kind for kind in PageKind if kind.value not in site.disable_kinds)


def resolve_outputs(site: SiteConfig) -> Mapping[PageKind, Tuple[OutputFormat, ...]]:
    """
    决定每种页面类型输出哪些格式：
      - HTML 始终输出，并排在第一位；
      - 其他格式必须出现在全局格式列表中 (例如 outputs.home: [HTML, RSS, JSON])；
      - disableKinds 中的页面类型或格式被移除。
    """
    if not site.output_list:
        raise NoOutputFormatsError('outputs')

    global_list = [name for name in site.output_list if name not in site.disable_kinds]
    if not global_list:
        raise NoOutputFormatsError('disableKinds')

    hypertext = site.output_formats.get(HYPERTEXT_FORMAT)
    if hypertext is None or hypertext.kind != OutputKind.HYPERTEXT:
        raise UnknownOutputFormatError('outputFormats.HTML', "the HTML output format must stay a hypertext format")

    resolved: Dict[PageKind, Tuple[OutputFormat, ...]] = {}
    for kind in enabled_page_kinds(site):
        candidates = site.outputs.get(kind.value, DEFAULT_KIND_OUTPUTS[kind])
        names: List[str] = [HYPERTEXT_FORMAT]
        for name in candidates:
            if name in global_list and name not in names:
                names.append(name)
        formats = []
        for name in names:
            fmt = site.output_formats.get(name)
            if fmt is None:
                raise UnknownOutputFormatError(f"outputs.{kind.value}", f"unknown output format '{name}'")
            formats.append(fmt)
        resolved[kind] = tuple(formats)
        logger.debug("Outputs for %s: %s", kind.value, ', '.join(names))

    return MappingProxyType(resolved)
