"""
安全工具模块：令牌生成与脱敏
"""
import secrets

# state 令牌熵（字节），token_urlsafe(32) 约 43 个字符 / 256 bit
STATE_TOKEN_BYTES = 32


def generate_state_token() -> str:
    """生成不可预测的一次性 state 令牌（CSPRNG）"""
    return secrets.token_urlsafe(STATE_TOKEN_BYTES)


def mask_secret(value: str | None, head: int = 6, tail: int = 4) -> str:
    """
    令牌脱敏，用于日志与接口展示

    - 空值返回 "null"
    - 长度不超过 head + tail + 2 时整体隐藏为 "****"
    - 其余保留首 head 位与末 tail 位
    """
    if value is None:
        return "null"
    if len(value) <= head + tail + 2:
        return "****"
    return f"{value[:head]}...{value[-tail:]}"

