"""
binvault/utils/logger.py
ตัวช่วยสร้าง Logger ประจำโมดูล (ใช้รูปแบบเดียวกันทุกคลาส)
"""

import logging


def get_logger(name: str, fmt: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s') -> logging.Logger:
    """คืน Logger ตามชื่อคอมโพเนนต์ และติด Handler ให้เพียงครั้งเดียว"""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(fmt)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger
