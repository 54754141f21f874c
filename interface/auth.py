"""认证边界 - 凭证校验与会话令牌

业务层只依赖 AuthBackend 的两个操作：
- authenticate(contact, credential) → (token, Identity)
- validate(token) → Identity

LocalTokenAuth 是开发与测试用的本地实现：凭证哈希保存在 users 表，
令牌保存在进程内存中并带有过期时间，进程重启后需要重新登录。
"""
import hashlib
import hmac
import secrets
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from database import DatabaseManager
from database.models import User, UserRole
from interface.base import Identity
from queueing.errors import Conflict, QueueError, ValidationError, store_errors

PBKDF2_ITERATIONS = 120_000
MIN_CREDENTIAL_LENGTH = 6


class Unauthorized(QueueError):
    """令牌缺失、无效或已过期，或凭证错误"""
    code = "unauthorized"


def hash_credential(credential: str, salt: Optional[str] = None,
                    iterations: int = PBKDF2_ITERATIONS) -> str:
    """生成凭证哈希，格式为 pbkdf2_sha256$<迭代次数>$<盐>$<哈希>。"""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", credential.encode("utf-8"), salt.encode("utf-8"), iterations
    )
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def verify_credential(credential: str, credential_hash: str) -> bool:
    """校验凭证是否与哈希匹配。"""
    try:
        algorithm, iterations, salt, expected = credential_hash.split("$")
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    actual = hash_credential(credential, salt, int(iterations)).split("$")[-1]
    return hmac.compare_digest(actual, expected)


def identity_of(user: User) -> Identity:
    return Identity(user_id=user.id, name=user.name,
                    role=UserRole(user.role).value)


class AuthBackend(ABC):
    """认证后端抽象基类"""

    @abstractmethod
    def authenticate(self, contact: str, credential: str) -> Tuple[str, Identity]:
        """校验凭证并签发会话令牌

        Raises:
            Unauthorized: 凭证错误
        """
        pass

    @abstractmethod
    def validate(self, token: str) -> Identity:
        """校验令牌并返回身份

        Raises:
            Unauthorized: 令牌无效或已过期
        """
        pass

    def revoke(self, token: str) -> None:
        """注销令牌（默认无操作）"""
        pass


class LocalTokenAuth(AuthBackend):
    """本地令牌认证

    Attributes:
        db: 数据库管理器
        token_ttl: 令牌有效期
    """

    def __init__(self, db: DatabaseManager, token_ttl_hours: int = 24,
                 clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.token_ttl = timedelta(hours=token_ttl_hours)
        self.clock = clock
        self._lock = threading.Lock()
        # token → (身份, 过期时间)
        self._tokens: Dict[str, Tuple[Identity, datetime]] = {}

    def register(self, name: str, contact: str, credential: str,
                 role: str = UserRole.CUSTOMER.value) -> Identity:
        """注册新用户。

        Raises:
            ValidationError: 字段缺失、凭证过短或角色无效
            Conflict: 联系方式已被注册
        """
        name = (name or "").strip()
        contact = (contact or "").strip()
        if not name:
            raise ValidationError("Name is required")
        if not contact:
            raise ValidationError("Contact is required")
        if not credential or len(credential) < MIN_CREDENTIAL_LENGTH:
            raise ValidationError(
                f"Please enter a password with {MIN_CREDENTIAL_LENGTH} or more characters"
            )
        try:
            role = UserRole(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role}")

        with store_errors("register user"), self.db.session_scope() as session:
            if self.db.users.get_by_contact(contact, session=session) is not None:
                raise Conflict("User already exists")
            user = self.db.users.create(name, contact, hash_credential(credential),
                                        role=role, session=session)
            identity = identity_of(user)

        logger.info(f"用户已注册: {identity.name} ({identity.role})")
        return identity

    def authenticate(self, contact: str, credential: str) -> Tuple[str, Identity]:
        with store_errors("authenticate user"):
            user = self.db.users.get_by_contact((contact or "").strip())
        if user is None or not verify_credential(credential or "",
                                                 user.credential_hash):
            logger.warning(f"登录失败: {contact}")
            raise Unauthorized("Invalid credentials")

        identity = identity_of(user)
        token = secrets.token_hex(32)
        with self._lock:
            self._tokens[token] = (identity, self.clock() + self.token_ttl)
        logger.info(f"用户登录: {identity.name} ({identity.role})")
        return token, identity

    def validate(self, token: str) -> Identity:
        if not token:
            raise Unauthorized("No token, authorization denied")
        with self._lock:
            entry = self._tokens.get(token)
            if entry is None:
                raise Unauthorized("Token is not valid")
            identity, expires_at = entry
            if self.clock() > expires_at:
                del self._tokens[token]
                raise Unauthorized("Token has expired")
        return identity

    def revoke(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def purge_expired(self) -> int:
        """清理已过期的令牌，返回清理数量。"""
        now = self.clock()
        with self._lock:
            expired = [t for t, (_, exp) in self._tokens.items() if now > exp]
            for token in expired:
                del self._tokens[token]
        return len(expired)


__all__ = [
    "AuthBackend",
    "Identity",
    "LocalTokenAuth",
    "Unauthorized",
    "hash_credential",
    "verify_credential",
]
