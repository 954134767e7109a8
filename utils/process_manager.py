# utils/process_manager.py
import psutil
import logging
from typing import List

logger = logging.getLogger(__name__)


def _collect_tree(pid: int) -> List[psutil.Process]:
    """Процесс и все его потомки (потомки первыми)"""
    process = psutil.Process(pid)
    try:
        children = process.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        children = []
    return children + [process]


def terminate_process_tree(pid: int, timeout: float = 3) -> bool:
    """
    Завершает процесс вместе с дочерними: terminate, ожидание, затем kill.

    Returns:
        bool: True если процесс завершен или уже не существовал

    Raises:
        psutil.AccessDenied: нет прав на завершение процесса
    """
    try:
        processes = _collect_tree(pid)
    except psutil.NoSuchProcess:
        logger.info(f"⚠️ Процесс PID: {pid} уже завершен")
        return True

    for proc in processes:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            continue

    gone, alive = psutil.wait_procs(processes, timeout=timeout)

    for proc in alive:
        logger.warning(f"⚠️ Процесс PID: {proc.pid} не завершился за {timeout}с, принудительное завершение")
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue

    if alive:
        _, still_alive = psutil.wait_procs(alive, timeout=timeout)
        if still_alive:
            logger.error(f"❌ Не удалось завершить процессы: {[p.pid for p in still_alive]}")
            return False

    logger.info(f"✅ Процесс PID: {pid} завершен")
    return True
