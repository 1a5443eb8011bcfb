"""
访问网关规则源

规则（IP 白名单 / 通行令牌）可在运行期修改：
- 管理接口 PUT /access/rules 调用 update()
- 配置了 ACCESS_GATE_RULES_FILE 时，文件 mtime 变化后下一次请求自动重新加载

规则对象本身不可变，修改即整体替换，读方拿到的永远是一致的快照。
"""
from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass
from typing import Any

from app.core.config import Settings
from app.core.logging import logger


@dataclass(frozen=True)
class AccessRules:
    enabled: bool = False
    ip_allowlist: tuple[str, ...] = ()
    pass_token_enabled: bool = False
    pass_tokens: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: dict[str, Any], base: AccessRules | None = None) -> AccessRules:
        """从 dict 构造规则，缺失字段沿用 base"""
        base = base or cls()
        return cls(
            enabled=bool(data.get("enabled", base.enabled)),
            ip_allowlist=_as_tuple(data.get("ip_allowlist", base.ip_allowlist)),
            pass_token_enabled=bool(data.get("pass_token_enabled", base.pass_token_enabled)),
            pass_tokens=_as_tuple(data.get("pass_tokens", base.pass_tokens)),
        )


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(str(item).strip() for item in value if str(item).strip())


class AccessRuleSource:
    def __init__(self, rules: AccessRules, rules_file: str | None = None):
        self._rules = rules
        self._rules_file = rules_file
        self._file_mtime: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> AccessRuleSource:
        rules = AccessRules(
            enabled=settings.ACCESS_GATE_ENABLED,
            ip_allowlist=_as_tuple(settings.ACCESS_GATE_IP_ALLOWLIST),
            pass_token_enabled=settings.ACCESS_GATE_PASS_TOKEN_ENABLED,
            pass_tokens=_as_tuple(settings.ACCESS_GATE_PASS_TOKENS),
        )
        source = cls(rules, rules_file=settings.ACCESS_GATE_RULES_FILE)
        source.reload_if_changed()
        return source

    def current(self) -> AccessRules:
        if self._rules_file:
            self.reload_if_changed()
        return self._rules

    def update(self, **changes: Any) -> AccessRules:
        """整体替换规则快照，只修改传入的字段"""
        unknown = set(changes) - {f.name for f in dataclasses.fields(AccessRules)}
        if unknown:
            raise ValueError(f"unknown access rule fields: {', '.join(sorted(unknown))}")
        for key in ("ip_allowlist", "pass_tokens"):
            if key in changes:
                changes[key] = _as_tuple(changes[key])
        self._rules = dataclasses.replace(self._rules, **changes)
        logger.info(
            f"access_rules_updated enabled={self._rules.enabled} "
            f"ip_count={len(self._rules.ip_allowlist)} "
            f"pass_token_enabled={self._rules.pass_token_enabled} "
            f"token_count={len(self._rules.pass_tokens)}"
        )
        return self._rules

    def reload_if_changed(self) -> bool:
        """规则文件 mtime 变化时重新加载；文件损坏时保留旧规则"""
        if not self._rules_file:
            return False
        try:
            mtime = os.stat(self._rules_file).st_mtime
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning(f"access_rules_file_stat_failed path={self._rules_file}: {exc}")
            return False

        if self._file_mtime is not None and mtime == self._file_mtime:
            return False

        try:
            with open(self._rules_file, encoding="utf-8") as fp:
                data = json.load(fp)
            if not isinstance(data, dict):
                raise ValueError("rules file must contain a JSON object")
            rules = AccessRules.from_mapping(data, base=self._rules)
        except (OSError, ValueError) as exc:
            logger.error(f"access_rules_file_invalid path={self._rules_file}: {exc}")
            self._file_mtime = mtime
            return False

        self._rules = rules
        self._file_mtime = mtime
        logger.info(f"access_rules_reloaded path={self._rules_file}")
        return True
