"""로깅 설정 모듈.

콘솔 출력과 일별 로그 파일(`logs/<prefix>_YYYYMMDD.log`)을 설정하고,
보관 기간이 지난 로그 파일을 정리합니다.

사용 예시:
    from meshcall.logging_config import setup_logging

    # 프로세스 시작 시 한 번 호출
    setup_logging(level="INFO", log_dir="logs", prefix="server")
"""

import glob
import logging
import os
from datetime import datetime, timedelta

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def cleanup_old_logs(log_dir: str, prefix: str, retention_days: int) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        prefix: 로그 파일 접두사 (예: "server")
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, f"{prefix}_*.log")):
        try:
            filename = os.path.basename(log_file)
            date_str = filename.replace(f"{prefix}_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    prefix: str = "server",
    retention_days: int = 60
) -> str:
    """루트 로거를 설정합니다.

    Args:
        level: 로그 레벨 이름
        log_dir: 로그 디렉토리 (없으면 생성)
        prefix: 로그 파일 접두사
        retention_days: 보관 기간 (일)

    Returns:
        str: 오늘 날짜 로그 파일 경로

    Note:
        이 함수는 프로세스 시작 시 한 번만 호출해야 합니다.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_filename = os.path.join(log_dir, f"{prefix}_{datetime.now().strftime('%Y%m%d')}.log")

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),  # 콘솔 출력
            logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
        ],
        force=True,
    )

    # aiortc/aioice 내부 로그는 너무 많음
    logging.getLogger("aioice").setLevel(logging.WARNING)
    logging.getLogger("aiortc").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    deleted = cleanup_old_logs(log_dir, prefix, retention_days)
    if deleted > 0:
        logger.info(f"오래된 로그 파일 {deleted}개 정리 완료 ({retention_days}일 이상)")
    logger.info(f"로깅 초기화 완료: level={level}, file={log_filename}")
    return log_filename
