"""
排队业务配置接口 - 支持可替换的初始数据

新项目可以实现自己的配置，替换默认的服务与窗口。
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any


class QueueConfig(ABC):
    """排队业务配置抽象基类"""

    @abstractmethod
    def get_services(self) -> List[Dict[str, Any]]:
        """获取初始服务列表

        Returns:
            每项包含 name 和 counters（窗口列表，每个窗口含 name、room_number）
        """
        pass


class DefaultOfficeConfig(QueueConfig):
    """默认的办事大厅配置"""

    def get_services(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "Billing",
                "counters": [
                    {"name": "Desk 1", "room_number": "A101"},
                    {"name": "Desk 2", "room_number": "A102"},
                ],
            },
            {
                "name": "Registration",
                "counters": [
                    {"name": "Desk 3", "room_number": "B201"},
                ],
            },
            {
                "name": "Customer Support",
                "counters": [
                    {"name": "Desk 4", "room_number": "C301"},
                ],
            },
        ]


# 全局配置实例（可以在 app.py 中替换）
queue_config: QueueConfig = DefaultOfficeConfig()
