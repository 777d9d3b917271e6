# errors.py

from typing import Optional


class SitePlanError(Exception):
    """所有构建计划错误的基类。"""


# -------------------------------------------------------------------------
# 内容错误：按文件报告，整个构建中止
# -------------------------------------------------------------------------
class ContentError(SitePlanError):
    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class MalformedFrontMatterError(ContentError):
    def __init__(self, path: str, field: str, reason: str):
        self.field = field
        super().__init__(path, f"front-matter field '{field}' {reason}")


class ContentReadError(ContentError):
    pass


class DuplicateTermSlugError(ContentError):
    """同一分类下两个不同词条生成了相同的 URL slug。"""

    def __init__(self, path: str, kind: str, first: str, second: str, slug: str):
        self.kind = kind
        self.terms = (first, second)
        self.slug = slug
        super().__init__(path, f"taxonomy '{kind}': terms '{first}' and '{second}' both map to URL slug '{slug}'")


# -------------------------------------------------------------------------
# 配置错误：始终致命，报告出错的配置键
# -------------------------------------------------------------------------
class ConfigurationError(SitePlanError):
    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"[{key}] {message}")


class ConfigFileError(ConfigurationError):
    pass


class InvalidConfigValueError(ConfigurationError):
    pass


class UnknownLanguageError(ConfigurationError):
    def __init__(self, code: str, key: str = 'languages', path: Optional[str] = None):
        self.code = code
        self.path = path
        if path:
            message = f"{path} declares language '{code}' which is not configured"
        else:
            message = f"language '{code}' is not configured"
        super().__init__(key, message)


class UnknownTaxonomyError(ConfigurationError):
    pass


class NoOutputFormatsError(ConfigurationError):
    def __init__(self, key: str = 'outputs'):
        super().__init__(key, "no output formats configured, the build would produce nothing")


class UnknownOutputFormatError(ConfigurationError):
    pass


class DuplicateMenuEntryError(ConfigurationError):
    pass


# -------------------------------------------------------------------------
# 内部错误：组装阶段的一致性检查失败 (正常情况下不可达)
# -------------------------------------------------------------------------
class PlanConsistencyError(SitePlanError):
    pass


class BuildCancelled(SitePlanError):
    """某个并行阶段失败后，其余阶段协作式退出时抛出。"""
