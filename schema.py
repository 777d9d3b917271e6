# schema.py - pydantic 校验用的公共类型与错误定位

from typing import Annotated, Any, Tuple

from pydantic import BaseModel, BeforeValidator, ConfigDict, TypeAdapter, ValidationError

from errors import InvalidConfigValueError

# 错误信息中使用 Hugo 的原始写法 (文档中的键已统一转为小写)
KEY_NAMES = {
    'baseurl': 'baseURL',
    'languagecode': 'languageCode',
    'defaultcontentlanguage': 'defaultContentLanguage',
    'contentdir': 'contentDir',
    'builddrafts': 'buildDrafts',
    'buildfuture': 'buildFuture',
    'buildexpired': 'buildExpired',
    'disablelanguages': 'disableLanguages',
    'summarylength': 'summaryLength',
    'languagename': 'languageName',
    'languagedirection': 'languageDirection',
    'mediatype': 'mediaType',
    'basename': 'baseName',
    'publishdate': 'publishDate',
    'expirydate': 'expiryDate',
}


class FrozenSchema(BaseModel):
    """所有校验模型的基类：不可变，保留未声明的键。"""
    model_config = ConfigDict(frozen=True, extra='allow')


# --- 宽松的标量转换 (YAML 中 title: 2024 之类的写法) ---

def scalar_text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, (dict, list, tuple, set)):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    return str(value)


def _flag(value: Any) -> Any:
    if value is None or value == '':
        return False
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _count(value: Any) -> Any:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    return value


def _names(value: Any) -> Tuple[str, ...]:
    """单个字符串、逗号分隔字符串或字符串列表。"""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(',') if v.strip())
    if isinstance(value, (list, tuple)):
        for v in value:
            if not isinstance(v, str) or not v.strip():
                raise ValueError(f"expected a non-empty string, got {v!r}")
        return tuple(v.strip() for v in value)
    raise ValueError(f"expected a list of strings, got {type(value).__name__}")


def _terms(value: Any) -> Tuple[str, ...]:
    """分类词条：列表或逗号分隔的字符串，空白词条被丢弃。"""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(t.strip() for t in value.split(',') if t.strip())
    if isinstance(value, (list, tuple)):
        terms = []
        for t in value:
            if t is None or isinstance(t, (dict, list)):
                raise ValueError(f"contains a non-scalar term: {t!r}")
            if str(t).strip():
                terms.append(str(t))
        return tuple(terms)
    raise ValueError(f"must be a list of terms, got {value!r}")


Text = Annotated[str, BeforeValidator(scalar_text)]
Flag = Annotated[bool, BeforeValidator(_flag)]
Count = Annotated[int, BeforeValidator(_count)]
NameList = Annotated[Tuple[str, ...], BeforeValidator(_names)]
TermList = Annotated[Tuple[str, ...], BeforeValidator(_terms)]

NAME_LIST = TypeAdapter(NameList)
TERM_LIST = TypeAdapter(TermList)


# --- 错误转换 ---

def error_location(error: dict, prefix: str = '') -> str:
    """('languages', 'fr', 'languagedirection') -> 'languages.fr.languageDirection'"""
    parts = [prefix] if prefix else []
    parts.extend(KEY_NAMES.get(str(part), str(part)) for part in error['loc'])
    return '.'.join(parts)


def error_reason(error: dict) -> str:
    if error['type'] == 'missing':
        return 'is missing'
    message = error['msg']
    if error['type'] == 'value_error' and message.startswith('Value error, '):
        return message[len('Value error, '):]
    # pydantic 自带的信息以 "Input should be ..." 开头
    return f"is invalid: {message[:1].lower()}{message[1:]} (got {error.get('input')!r})"


def validate_config(schema: Any, data: Any, key: str) -> Any:
    """
    用 pydantic 模型 (或 TypeAdapter) 校验配置片段。
    失败时抛出 InvalidConfigValueError，键路径指向第一个出错的位置。
    """
    try:
        if isinstance(schema, TypeAdapter):
            return schema.validate_python(data)
        return schema.model_validate(data)
    except ValidationError as exc:
        error = exc.errors()[0]
        raise InvalidConfigValueError(error_location(error, key), error_reason(error)) from None
