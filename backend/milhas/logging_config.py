"""
日志配置

功能:
- 结构化 JSON 日志格式（便于对账审计）
- 分级日志文件（app.log, error.log）
- 日志轮转（避免文件过大）
- 告警辅助函数 log_alert
"""
import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

# LogRecord 自带的属性，其余的都视为 extra 字段
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'asctime', 'taskName',
}


class StructuredFormatter(logging.Formatter):
    """结构化 JSON 日志格式化器

    输出格式:
    {
        "timestamp": "2024-01-15T10:30:15.123Z",
        "level": "INFO",
        "logger": "milhas.services.payout_service",
        "message": "Payout day computed",
        "extra": {"team": "recife", "date": "2024-01-15", ...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # 添加文件位置信息（仅在 DEBUG 模式）
        if record.levelno <= logging.DEBUG:
            log_data["location"] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                extra_fields[key] = value
            except (TypeError, ValueError):
                extra_fields[key] = str(value)

        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    """人类可读的日志格式化器（用于控制台）"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET if color else ''

        # 简化的 logger 名称
        logger_name = record.name
        if logger_name.startswith('milhas.'):
            logger_name = logger_name[len('milhas.'):]

        formatted = f"{timestamp} {color}{record.levelname:8}{reset} [{logger_name}] {record.getMessage()}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def setup_logging(log_dir: Optional[str] = None, level: str = "INFO") -> logging.Logger:
    """配置根日志记录器

    由入口（脚本）显式调用；库代码只使用 logging.getLogger(__name__)。
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    # 控制台处理器（人类可读格式）
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(ReadableFormatter())
    root_logger.addHandler(console_handler)

    if log_dir:
        _log_dir = Path(log_dir)
        try:
            _log_dir.mkdir(parents=True, exist_ok=True)

            # 主日志文件：最大 10MB，保留 5 个备份
            file_handler = logging.handlers.RotatingFileHandler(
                _log_dir / "app.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(StructuredFormatter())
            root_logger.addHandler(file_handler)

            # 错误日志文件（只记录 WARNING 及以上）
            error_handler = logging.handlers.RotatingFileHandler(
                _log_dir / "error.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8'
            )
            error_handler.setLevel(logging.WARNING)
            error_handler.setFormatter(StructuredFormatter())
            root_logger.addHandler(error_handler)
        except OSError as e:
            root_logger.warning(f"无法创建文件日志处理器: {e}")

    # 第三方库降噪
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    return root_logger


class AlertLevel:
    """告警级别常量"""
    P0_CRITICAL = "P0"  # 致命：结算无法完成
    P1_URGENT = "P1"    # 紧急：某次结算中止
    P2_WARNING = "P2"   # 警告：历史配置异常，已降级处理


def log_alert(
    logger: logging.Logger,
    level: str,
    title: str,
    message: str,
    context: Optional[dict] = None,
    suggested_actions: Optional[list] = None
):
    """记录告警日志

    Args:
        logger: 日志记录器
        level: 告警级别 (P0/P1/P2)
        title: 告警标题
        message: 告警详情
        context: 上下文信息（问题定位）
        suggested_actions: 建议操作

    Example:
        log_alert(
            logger,
            AlertLevel.P2_WARNING,
            "分成方案配置异常",
            "方案 42 的 bps 合计为 9000，已回退为 100% 归属所有者",
            context={"plan_id": 42, "owner_id": 7, "sum_bps": 9000},
            suggested_actions=["在分成配置页重新保存该员工的方案"]
        )
    """
    extra = {
        "alert_level": level,
        "alert_title": title,
    }

    if context:
        extra["context"] = context

    if suggested_actions:
        extra["suggested_actions"] = suggested_actions

    if level == AlertLevel.P0_CRITICAL:
        logger.critical(f"[{level}] {title}: {message}", extra=extra)
    elif level == AlertLevel.P1_URGENT:
        logger.error(f"[{level}] {title}: {message}", extra=extra)
    else:
        logger.warning(f"[{level}] {title}: {message}", extra=extra)
