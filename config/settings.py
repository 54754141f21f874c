"""全局配置管理

所有用户可配置项均通过 .env 文件设置，运行时自动加载到此处。

使用方式：
    1. 运行 python scripts/setup_env.py 生成 .env 文件
    2. 或手动创建 .env 文件，也可直接设置同名环境变量
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置 - 所有字段均可通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/queue.db"

    # ========== Web 平台配置 ==========
    web_host: str = "0.0.0.0"
    web_port: int = 8080
    token_ttl_hours: int = 24

    # ========== 实时推送 ==========
    broadcast_send_timeout: float = 2.0  # 单个观察端的发送超时（秒）

    # ========== 统计 ==========
    statistics_history_days: int = 7
    service_history_days: int = 30
    reconcile_time: str = "23:55"  # 每日统计校对时间 HH:MM

    # ========== 日志 ==========
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# 全局配置实例
settings = Settings()
