"""语义化版本匹配

纯函数，无状态。版本解析与排序交给 semver 库，范围语法按 npm 约定展开为比较器集合:

  - 精确版本:   1.2.3 / =1.2.3 / v1.2.3
  - 比较器:     >1.2.3  >=1.2.3  <2.0.0  <=1.2.3
  - 比较器集合: 空白分隔表示“且”，|| 分隔表示“或”
  - 插入符:     ^1.2.3 := >=1.2.3 <2.0.0；^0.2.3 := >=0.2.3 <0.3.0
  - 波浪号:     ~1.2.3 := >=1.2.3 <1.3.0
  - 通配/部分:  *  1.x  1.2  1.2.*
  - 连字符:     1.2.3 - 2.3.4

预发布版本（1.2.3-beta）只在同一集合中存在相同 major.minor.patch 的预发布比较器时才可能满足。
无法解析的版本或范围一律抛出 MalformedVersionError，不会静默返回 False。
"""

from __future__ import annotations

import operator
import re
from collections.abc import Iterable
from functools import lru_cache
from typing import Callable

import semver

from archpkg.core.exceptions import MalformedVersionError

Comparator = tuple[str, semver.Version]
ComparatorSet = tuple[Comparator, ...]

_OPS: dict[str, Callable[[semver.Version, semver.Version], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "=": operator.eq,
}

_WILDCARDS = frozenset(("x", "X", "*"))

_PARTIAL_RE = re.compile(
    r"^v?(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)
_TOKEN_RE = re.compile(r"^(?P<op><=|>=|<|>|=|\^|~>|~)?(?P<ver>.*)$")
_HYPHEN_RE = re.compile(r"^\s*(?P<low>\S+)\s+-\s+(?P<high>\S+)\s*$")
_OP_SPACE_RE = re.compile(r"(<=|>=|<|>|=|\^|~>|~)\s+")

# 不可能满足的比较器，用于 >* / <* 等退化写法
_NOTHING: ComparatorSet = (("<", semver.Version(0, 0, 0)),)


def parse_version(text: str) -> semver.Version:
    """解析完整版本号（允许前缀 v / =），忽略 build 元数据"""
    raw = str(text).strip()
    if raw.startswith("="):
        raw = raw[1:].strip()
    if raw[:1] in ("v", "V"):
        raw = raw[1:]
    try:
        return semver.Version.parse(raw).replace(build=None)
    except (ValueError, TypeError) as e:
        raise MalformedVersionError(f"无效的版本号: {text!r}") from e


def satisfies(version: str, version_range: str | None) -> bool:
    """判断 version 是否满足 version_range；范围为空表示任意版本都满足"""
    if version_range is None or not str(version_range).strip():
        parse_version(version)
        return True
    ver = parse_version(version)
    return any(_test_set(ver, cset) for cset in _parse_range(str(version_range).strip()))


def max_satisfying(versions: Iterable[str], version_range: str | None) -> str | None:
    """从候选版本中选出满足范围的最高版本，无候选时返回 None"""
    best: semver.Version | None = None
    best_s: str | None = None
    for v in versions:
        if not satisfies(v, version_range):
            continue
        parsed = parse_version(v)
        if best is None or parsed > best:
            best, best_s = parsed, v
    return best_s


# ---------------------------------------------------------------------------
# 范围解析
# ---------------------------------------------------------------------------


def _test_set(ver: semver.Version, cset: ComparatorSet) -> bool:
    if not all(_OPS[op](ver, bound) for op, bound in cset):
        return False
    if not ver.prerelease:
        return True
    # 预发布版本只允许被同一 major.minor.patch 的预发布比较器放行
    return any(
        bound.prerelease and bound.to_tuple()[:3] == ver.to_tuple()[:3]
        for _, bound in cset
    )


@lru_cache(maxsize=256)
def _parse_range(text: str) -> tuple[ComparatorSet, ...]:
    sets = []
    for part in text.split("||"):
        part = part.strip()
        hyphen = _HYPHEN_RE.match(part)
        if hyphen:
            sets.append(_hyphen(hyphen.group("low"), hyphen.group("high"), text))
            continue
        part = _OP_SPACE_RE.sub(r"\1", part)
        comparators: list[Comparator] = []
        for token in part.split():
            comparators.extend(_expand_token(token, text))
        sets.append(tuple(comparators))
    return tuple(sets)


def _partial(raw: str, whole: str) -> tuple[int | None, int | None, int | None, str | None]:
    m = _PARTIAL_RE.match(raw)
    if not m:
        raise MalformedVersionError(f"无效的版本范围: {whole!r}")

    def num(key: str) -> int | None:
        value = m.group(key)
        return None if value is None or value in _WILDCARDS else int(value)

    major, minor, patch = num("major"), num("minor"), num("patch")
    # 1.x.3 这类写法中通配之后的部分一律视为通配
    if major is None:
        minor = patch = None
    elif minor is None:
        patch = None
    pre = m.group("pre") if patch is not None else None
    return major, minor, patch, pre


def _v(major: int, minor: int = 0, patch: int = 0, pre: str | None = None) -> semver.Version:
    return semver.Version(major, minor, patch, prerelease=pre)


def _expand_token(token: str, whole: str) -> list[Comparator]:
    m = _TOKEN_RE.match(token)
    if m is None:
        raise MalformedVersionError(f"无效的版本范围: {whole!r}")
    op = m.group("op") or ""
    major, minor, patch, pre = _partial(m.group("ver"), whole)

    if op == "^":
        return _caret(major, minor, patch, pre)
    if op in ("~", "~>"):
        return _tilde(major, minor, patch, pre)
    return _xrange(op, major, minor, patch, pre)


def _caret(major: int | None, minor: int | None, patch: int | None, pre: str | None) -> list[Comparator]:
    if major is None:
        return []
    if minor is None:
        return [(">=", _v(major)), ("<", _v(major + 1))]
    if patch is None:
        if major == 0:
            return [(">=", _v(0, minor)), ("<", _v(0, minor + 1))]
        return [(">=", _v(major, minor)), ("<", _v(major + 1))]
    low = (">=", _v(major, minor, patch, pre))
    if major > 0:
        return [low, ("<", _v(major + 1))]
    if minor > 0:
        return [low, ("<", _v(0, minor + 1))]
    return [low, ("<", _v(0, 0, patch + 1))]


def _tilde(major: int | None, minor: int | None, patch: int | None, pre: str | None) -> list[Comparator]:
    if major is None:
        return []
    if minor is None:
        return [(">=", _v(major)), ("<", _v(major + 1))]
    if patch is None:
        return [(">=", _v(major, minor)), ("<", _v(major, minor + 1))]
    return [(">=", _v(major, minor, patch, pre)), ("<", _v(major, minor + 1))]


def _xrange(
    op: str, major: int | None, minor: int | None, patch: int | None, pre: str | None,
) -> list[Comparator]:
    if major is None:
        return list(_NOTHING) if op in ("<", ">") else []

    if patch is not None:
        return [(op or "=", _v(major, minor, patch, pre))]

    # 部分版本号: 补零并按操作符调整边界
    if op in ("", "="):
        if minor is None:
            return [(">=", _v(major)), ("<", _v(major + 1))]
        return [(">=", _v(major, minor)), ("<", _v(major, minor + 1))]
    if op == ">":
        return [(">=", _v(major + 1) if minor is None else _v(major, minor + 1))]
    if op == "<=":
        return [("<", _v(major + 1) if minor is None else _v(major, minor + 1))]
    return [(op, _v(major, minor or 0))]


def _hyphen(low: str, high: str, whole: str) -> ComparatorSet:
    lmaj, lmin, lpat, lpre = _partial(low, whole)
    hmaj, hmin, hpat, hpre = _partial(high, whole)
    result: list[Comparator] = []
    if lmaj is not None:
        result.append((">=", _v(lmaj, lmin or 0, lpat or 0, lpre)))
    if hmaj is None:
        pass
    elif hmin is None:
        result.append(("<", _v(hmaj + 1)))
    elif hpat is None:
        result.append(("<", _v(hmaj, hmin + 1)))
    else:
        result.append(("<=", _v(hmaj, hmin, hpat, hpre)))
    return tuple(result)
