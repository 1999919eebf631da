"""
Logging & Audit Module

- System log (console + file)
- Trade log (CSV): every OPEN, SCALE and CLOSE
- Risk state log (CSV): RiskMetrics after every closed trade

All position changes must be logged.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, Optional

from .config import PathConfig
from .models import Position, Trade, utc_now
from .risk_engine import RiskMetrics


LOGGER_NAME = "AdaptiveTrader"


def setup_logging(paths: PathConfig, verbose: bool = True) -> logging.Logger:
    """
    Configure system logging.

    Returns configured logger. Safe to call more than once.
    """
    paths.logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    file_handler = logging.FileHandler(paths.system_log)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)
    return logger


class _CsvLog:
    HEADERS: list = []

    def __init__(self, log_path: Path):
        self.log_path = log_path
        self._ensure_headers()

    def _ensure_headers(self) -> None:
        if not self.log_path.exists():
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "w", newline="") as f:
                csv.writer(f).writerow(self.HEADERS)

    def _write_row(self, row: Dict) -> None:
        with open(self.log_path, "a", newline="") as f:
            csv.DictWriter(f, fieldnames=self.HEADERS).writerow(row)


class TradeLogger(_CsvLog):
    """CSV audit trail of position changes."""

    HEADERS = [
        "timestamp",
        "action",  # OPEN, SCALE, CLOSE
        "position_id",
        "trade_id",
        "symbol",
        "side",
        "quantity",
        "price",
        "position_size",
        "pnl",
        "pnl_percent",
        "reason",
    ]

    def log_open(self, position: Position, trade: Trade, reason: str = "") -> None:
        self._write_row({
            "timestamp": trade.timestamp.isoformat(),
            "action": "OPEN",
            "position_id": position.id,
            "trade_id": trade.id,
            "symbol": position.symbol,
            "side": position.side.value,
            "quantity": trade.quantity,
            "price": trade.price,
            "position_size": position.size,
            "pnl": "",
            "pnl_percent": "",
            "reason": reason,
        })

    def log_scale(self, position: Position, trade: Trade, reason: str = "") -> None:
        self._write_row({
            "timestamp": trade.timestamp.isoformat(),
            "action": "SCALE",
            "position_id": position.id,
            "trade_id": trade.id,
            "symbol": position.symbol,
            "side": trade.side.value,
            "quantity": trade.quantity,
            "price": trade.price,
            "position_size": position.size,
            "pnl": position.pnl,
            "pnl_percent": position.pnl_percent,
            "reason": reason,
        })

    def log_close(self, position: Position, trade: Trade, reason: str = "") -> None:
        self._write_row({
            "timestamp": trade.timestamp.isoformat(),
            "action": "CLOSE",
            "position_id": position.id,
            "trade_id": trade.id,
            "symbol": position.symbol,
            "side": position.side.value,
            "quantity": trade.quantity,
            "price": trade.price,
            "position_size": 0,
            "pnl": position.pnl,
            "pnl_percent": position.pnl_percent,
            "reason": reason,
        })


class RiskLogger(_CsvLog):
    """CSV logger for risk state snapshots."""

    HEADERS = [
        "timestamp",
        "recent_win_rate",
        "consecutive_losses",
        "current_risk_level",
        "total_trades",
        "profitable_trades",
        "cooldown_until",
    ]

    def log_state(self, metrics: RiskMetrics, timestamp: Optional[str] = None) -> None:
        self._write_row({
            "timestamp": timestamp or utc_now().isoformat(),
            "recent_win_rate": f"{metrics.recent_win_rate:.4f}",
            "consecutive_losses": metrics.consecutive_losses,
            "current_risk_level": f"{metrics.current_risk_level:.4f}",
            "total_trades": metrics.total_trades,
            "profitable_trades": metrics.profitable_trades,
            "cooldown_until": (
                metrics.last_cooldown_end.isoformat() if metrics.last_cooldown_end else ""
            ),
        })
