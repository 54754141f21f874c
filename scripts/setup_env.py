#!/usr/bin/env python3
"""交互式生成 .env 配置文件

使用方式：
    python scripts/setup_env.py

逐项询问 Settings 中的配置，直接回车使用默认值。
"""
import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")

sys.path.insert(0, PROJECT_ROOT)

from config.settings import Settings

# (env_key, 描述)，默认值取自 Settings 字段
CONFIG_ITEMS = [
    ("DATABASE_URL", "数据库连接地址"),
    ("WEB_HOST", "Web 监听地址"),
    ("WEB_PORT", "Web 监听端口"),
    ("TOKEN_TTL_HOURS", "登录令牌有效期（小时）"),
    ("BROADCAST_SEND_TIMEOUT", "单个观察端的推送超时（秒）"),
    ("STATISTICS_HISTORY_DAYS", "统计总览的历史天数"),
    ("SERVICE_HISTORY_DAYS", "单个服务统计的历史天数"),
    ("RECONCILE_TIME", "每日统计校对时间（HH:MM）"),
    ("LOG_LEVEL", "日志级别"),
]


def default_for(key: str) -> str:
    return str(Settings.model_fields[key.lower()].default)


def main():
    if os.path.exists(ENV_FILE):
        choice = input(f"已存在 {ENV_FILE}，是否覆盖？(y/N): ").strip().lower()
        if choice != "y":
            print("已取消。")
            return

    env_lines = ["# 排队叫号系统 配置文件", "# 由 scripts/setup_env.py 生成"]
    for key, desc in CONFIG_ITEMS:
        default = default_for(key)
        value = input(f"{desc} {key} (默认: {default}): ").strip()
        env_lines.append(f"{key}={value or default}")

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write("\n".join(env_lines) + "\n")

    print(f"配置文件已生成: {ENV_FILE}")
    print("首次使用请先初始化数据库：python scripts/init_db.py")


if __name__ == "__main__":
    main()
