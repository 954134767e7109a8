# ui/icons.py
import math
from pathlib import Path
from PySide6.QtGui import QIcon, QPixmap, QPainter, QColor, QPolygonF, QPen
from PySide6.QtCore import Qt, QPointF

# Цвета звезды в трее
STAR_ACTIVE = QColor(255, 215, 0)
STAR_IDLE = QColor(150, 150, 150)
STAR_BORDER = QColor(218, 165, 32)


def _star_polygon(size, points=5):
    """Пятиконечная звезда, вписанная в квадрат size x size"""
    cx = cy = size / 2
    outer = size * 0.45
    inner = size * 0.19
    polygon = QPolygonF()
    for i in range(points * 2):
        radius = outer if i % 2 == 0 else inner
        angle = math.pi / points * i - math.pi / 2
        polygon.append(QPointF(cx + radius * math.cos(angle), cy + radius * math.sin(angle)))
    return polygon


class IconManager:
    def __init__(self):
        self.resources_dir = Path("resources").absolute()

    def get_icon(self, icon_name):
        """Возвращает иконку по имени файла или рисует звезду"""
        icon_path = self.resources_dir / icon_name
        if icon_path.exists():
            return QIcon(str(icon_path))
        return QIcon(self.draw_star(active="active" in icon_name))

    def draw_star(self, active=True, size=32):
        pixmap = QPixmap(size, size)
        pixmap.fill(Qt.transparent)

        painter = QPainter(pixmap)
        painter.setRenderHint(QPainter.Antialiasing)
        painter.setPen(QPen(STAR_BORDER if active else STAR_IDLE.darker(130), 1.5))
        painter.setBrush(STAR_ACTIVE if active else STAR_IDLE)
        painter.drawPolygon(_star_polygon(size))
        painter.end()
        return pixmap


# Синглтон
_icon_manager = None


def get_icon_manager():
    global _icon_manager
    if _icon_manager is None:
        _icon_manager = IconManager()
    return _icon_manager
