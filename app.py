#!/usr/bin/env python3
"""排队叫号系统 - 应用入口

启动 Web 服务，提供：
1. 取号 / 到场 / 叫号 / 过号 REST 接口
2. 服务与窗口管理、统计报表
3. WebSocket 实时推送（/ws）
4. 每日统计校对定时任务

使用方式：
    python app.py

    # 指定端口
    python app.py --port 8080

    # 指定数据库
    python app.py --db sqlite:///data/queue.db

环境变量（在 .env 文件中配置，运行 python scripts/setup_env.py 生成）：
    DATABASE_URL            数据库连接地址
    WEB_HOST / WEB_PORT     监听地址 / 端口（默认 0.0.0.0:8080）
    TOKEN_TTL_HOURS         登录令牌有效期（小时）
    RECONCILE_TIME          每日统计校对时间（HH:MM）
    LOG_LEVEL               日志级别
"""
import argparse
import asyncio
import signal
import sys

from loguru import logger

from config.settings import settings


def configure_logging(level: str):
    """配置日志"""
    logger.remove()
    logger.add(
        sys.stdout,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
    )


async def _cleanup(web, scheduler, db):
    """统一资源清理函数。

    确保 Web 服务器、调度器和数据库连接被正确关闭，释放端口和文件句柄。
    """
    logger.info("正在清理资源...")

    # 1. 停止 Web 服务器（释放端口）
    if web is not None:
        try:
            await web.shutdown()
        except Exception as e:
            logger.warning(f"停止 Web 服务器时出错: {e}")

    # 2. 停止调度器
    if scheduler is not None:
        try:
            scheduler.stop()
        except Exception as e:
            logger.warning(f"停止调度器时出错: {e}")

    # 3. 关闭数据库连接（释放连接池）
    if db is not None:
        try:
            db.close()
        except Exception as e:
            logger.warning(f"关闭数据库连接时出错: {e}")

    logger.info("服务已停止")


async def main():
    parser = argparse.ArgumentParser(description="排队叫号系统")
    parser.add_argument("--host", default=settings.web_host,
                        help=f"监听地址 (默认: {settings.web_host})")
    parser.add_argument("--port", type=int, default=settings.web_port,
                        help=f"监听端口 (默认: {settings.web_port})")
    parser.add_argument("--db", default=settings.database_url,
                        help="数据库连接 URL")
    parser.add_argument("--no-scheduler", action="store_true",
                        help="不启动每日统计校对任务")
    args = parser.parse_args()

    configure_logging(settings.log_level)

    # 用于 finally 清理的引用
    web = None
    scheduler = None
    db = None

    try:
        # 初始化数据库
        from database import DatabaseManager
        db = DatabaseManager(args.db)
        db.create_tables()
        logger.info(f"数据库已连接: {db.database_url}")

        # 排队核心
        from queueing import (
            AdminOperations, EventBus, KeyedLock, QueryFacade,
            StatisticsAggregator, TicketLifecycleEngine,
        )
        events = EventBus()
        statistics = StatisticsAggregator(db, events)
        engine = TicketLifecycleEngine(db, events, statistics, KeyedLock())
        admin = AdminOperations(db, events)
        query = QueryFacade(db)

        # 实时推送与 Web 通道
        from interface import BroadcastHub, LocalTokenAuth, WebChannel
        hub = BroadcastHub(query, send_timeout=settings.broadcast_send_timeout)
        events.subscribe(hub.handle_event)
        auth = LocalTokenAuth(db, token_ttl_hours=settings.token_ttl_hours)

        web = WebChannel(engine, admin, query, hub, auth,
                         host=args.host, port=args.port)
        await web.startup()

        # 每日统计校对
        if not args.no_scheduler:
            from queueing.scheduler import Scheduler
            scheduler = Scheduler(asyncio.get_running_loop())
            scheduler.add_reconcile_task(statistics)
            scheduler.start()

        print()
        print("=" * 60)
        print(f"  排队叫号系统已启动!")
        print(f"  访问地址: http://localhost:{args.port}")
        print(f"  实时推送: ws://localhost:{args.port}/ws")
        print(f"  数据库: {db.database_url}")
        print(f"  统计校对: {'每日 ' + settings.reconcile_time if scheduler else '未启用'}")
        print("=" * 60)
        print("  按 Ctrl+C 停止服务")
        print()

        # 信号处理
        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()
        _shutdown_requested = False

        def signal_handler(signum):
            """处理退出信号"""
            nonlocal _shutdown_requested
            if _shutdown_requested:
                # 第二次收到信号，强制退出
                logger.warning("再次收到退出信号，强制退出...")
                for task in asyncio.all_tasks(loop):
                    task.cancel()
                return
            _shutdown_requested = True
            logger.info(f"收到信号 {signum}，正在关闭服务...")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler, sig)

        # 保持运行，直到收到退出信号
        await shutdown_event.wait()

    except asyncio.CancelledError:
        logger.info("任务被取消，正在清理...")
    except KeyboardInterrupt:
        logger.info("收到键盘中断信号")
    finally:
        await _cleanup(web, scheduler, db)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        print("\n已停止。")
