"""
结构化日志配置 (structlog)

- 所有模块通过 get_logger(__name__) 获取日志器，事件名使用 snake_case
- 开发环境输出彩色控制台日志，生产环境可切换为 JSON
- 日志写到 stderr，标准输出留给 CLI 报告
- 工作线程通过 job_log_context 绑定 job_id，回测循环内的日志自动带上任务信息
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, TextIO

import structlog
from structlog.types import EventDict, Processor

APP_NAME = "cryptosim"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """为每条日志加上应用名"""
    event_dict["app"] = APP_NAME
    return event_dict


def configure_logging(
    log_level: str | None = None,
    json_logs: bool | None = None,
    enable_colors: bool = True,
    stream: TextIO | None = None,
) -> None:
    """
    配置 structlog + 标准库 logging

    Args:
        log_level: 日志级别，默认读取 SimulationSettings.log_level
        json_logs: 是否输出 JSON，默认读取 SimulationSettings.json_logs
        enable_colors: 控制台日志是否着色（JSON 模式下忽略）
        stream: 输出流，默认 stderr
    """
    if log_level is None or json_logs is None:
        from cryptosim.config.settings import SimulationSettings

        settings = SimulationSettings()
        log_level = log_level or settings.log_level
        json_logs = settings.json_logs if json_logs is None else json_logs

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=enable_colors))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """获取日志器，例如 get_logger(__name__).info("job_submitted", job_id=...)"""
    return structlog.get_logger(name)


@contextmanager
def job_log_context(job_id: str, **fields: Any) -> Iterator[None]:
    """
    在当前线程内为所有日志绑定任务上下文

    contextvars 按线程隔离，不同任务的上下文互不影响。
    """
    with structlog.contextvars.bound_contextvars(job_id=job_id, **fields):
        yield


configure_logging(log_level="INFO", json_logs=False)
