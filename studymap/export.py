"""Export functionality for StudyMap mind maps."""

import math
import re
from pathlib import Path
from typing import Dict, Iterable, Optional

import cairo

from studymap.database import Database, MindMap, Node, get_data_dir
from studymap.hierarchy import TreeIndex
from studymap.layout import LayoutResult, RenderNode, compute_layout


class MindMapExporter:
    """Handles exporting mind maps to Markdown and images."""

    COLORS = {
        'background': (0.973, 0.980, 0.984),      # #F8FAFB
        'surface': (1.0, 1.0, 1.0),               # #FFFFFF
        'border': (0.886, 0.910, 0.941),          # #E2E8F0
        'text_primary': (0.059, 0.090, 0.165),    # #0F172A
        'text_secondary': (0.392, 0.455, 0.545),  # #64748B
        'accent': (0.353, 0.373, 0.941),          # #5A5FF0
        'dangling': (1.0, 0.667, 0.0),            # #FFAA00
    }

    NODE_HEIGHT = 64
    NODE_PADDING = 12
    MAX_TITLE_CHARS = 28
    PADDING = 50

    def __init__(self, db: Database):
        self.db = db

    # ==================== Markdown ====================

    @staticmethod
    def to_markdown(mind_map: MindMap, nodes: Iterable[Node]) -> str:
        """Render a map as nested headings, content as paragraphs."""
        tree = TreeIndex(nodes)
        parts = [f"# {mind_map.title}\n\n"]
        visited = set()

        def render_node(node: Node, level: int):
            if node.id in visited:
                return
            visited.add(node.id)
            # Limit heading depth to 6 (markdown max)
            heading = "#" * min(level + 2, 6)
            parts.append(f"{heading} {node.title}\n\n")
            if node.content:
                parts.append(f"{node.content}\n\n")
            for child in tree.children(node.id):
                render_node(child, level + 1)

        for root in tree.roots():
            render_node(root, 0)
        for node in tree.dangling():
            render_node(node, 0)

        return "".join(parts)

    def export_markdown(self, map_id: str, filepath: str) -> bool:
        """Export a map to a Markdown outline."""
        mind_map = self.db.require_map(map_id)
        nodes = self.db.list_nodes(map_id)
        if not nodes:
            return False

        Path(filepath).write_text(self.to_markdown(mind_map, nodes), encoding="utf-8")
        return True

    # ==================== Images ====================

    def _layout(self, mind_map: MindMap, collapsed: Iterable[str],
                positions: Optional[Dict[str, tuple]]):
        nodes = self.db.list_nodes(mind_map.id)
        result = compute_layout(nodes, collapsed=collapsed, previous=positions,
                                settings=mind_map.settings)
        return {n.id: n for n in nodes}, result

    def _node_width(self, mind_map: MindMap) -> float:
        return mind_map.settings.horizontal_spacing * 0.8

    def _bounds(self, result: LayoutResult, node_width: float):
        min_x = min(rn.x for rn in result.render_nodes)
        max_x = max(rn.x + node_width for rn in result.render_nodes)
        min_y = min(rn.y for rn in result.render_nodes)
        max_y = max(rn.y + self.NODE_HEIGHT for rn in result.render_nodes)
        return min_x, min_y, max_x, max_y

    def _paint(self, cr, mind_map: MindMap, by_id: Dict[str, Node],
               result: LayoutResult, transparent: bool = False):
        if not transparent:
            cr.set_source_rgb(*self.COLORS['background'])
            cr.paint()

        node_width = self._node_width(mind_map)
        rendered = {rn.id: rn for rn in result.render_nodes}
        for edge in result.render_edges:
            if edge.parent_id in rendered and edge.child_id in rendered:
                self._draw_connection(cr, rendered[edge.parent_id], rendered[edge.child_id], node_width)
        for rn in result.render_nodes:
            self._draw_node(cr, by_id[rn.id], rn, node_width)

    def export_png(self, map_id: str, filepath: str, scale: float = 2.0,
                   transparent: bool = False, collapsed: Iterable[str] = (),
                   positions: Optional[Dict[str, tuple]] = None) -> bool:
        """Export a map to a PNG image.

        `positions` are on-screen positions from a viewer (WYSIWYG export);
        without them the computed layout is drawn.
        """
        mind_map = self.db.require_map(map_id)
        by_id, result = self._layout(mind_map, collapsed, positions)
        if not result.render_nodes:
            return False

        min_x, min_y, max_x, max_y = self._bounds(result, self._node_width(mind_map))
        width = int((max_x - min_x + self.PADDING * 2) * scale)
        height = int((max_y - min_y + self.PADDING * 2) * scale)

        surface = cairo.ImageSurface(cairo.FORMAT_ARGB32, width, height)
        cr = cairo.Context(surface)
        cr.scale(scale, scale)
        cr.translate(-min_x + self.PADDING, -min_y + self.PADDING)

        self._paint(cr, mind_map, by_id, result, transparent)

        surface.write_to_png(filepath)
        return True

    def export_svg(self, map_id: str, filepath: str, collapsed: Iterable[str] = (),
                   positions: Optional[Dict[str, tuple]] = None) -> bool:
        """Export a map to an SVG image."""
        mind_map = self.db.require_map(map_id)
        by_id, result = self._layout(mind_map, collapsed, positions)
        if not result.render_nodes:
            return False

        min_x, min_y, max_x, max_y = self._bounds(result, self._node_width(mind_map))
        width = max_x - min_x + self.PADDING * 2
        height = max_y - min_y + self.PADDING * 2

        surface = cairo.SVGSurface(filepath, width, height)
        cr = cairo.Context(surface)
        cr.translate(-min_x + self.PADDING, -min_y + self.PADDING)

        self._paint(cr, mind_map, by_id, result)

        surface.finish()
        return True

    def export_pdf(self, map_id: str, filepath: str, page_size: str = "A4",
                   collapsed: Iterable[str] = ()) -> bool:
        """Export a map to PDF, scaled to fit the page."""
        mind_map = self.db.require_map(map_id)
        by_id, result = self._layout(mind_map, collapsed, None)
        if not result.render_nodes:
            return False

        # Page sizes in points (72 points = 1 inch)
        page_sizes = {
            "A4": (842, 595),
            "Letter": (792, 612),
        }

        min_x, min_y, max_x, max_y = self._bounds(result, self._node_width(mind_map))
        map_width = max_x - min_x + self.PADDING * 2
        map_height = max_y - min_y + self.PADDING * 2

        if page_size == "Auto":
            width, height = map_width, map_height
            scale = 1.0
        else:
            width, height = page_sizes.get(page_size, page_sizes["A4"])
            scale = min((width - 40) / map_width, (height - 40) / map_height, 1.0)

        surface = cairo.PDFSurface(filepath, width, height)
        surface.set_metadata(cairo.PDF_METADATA_TITLE, mind_map.title)
        cr = cairo.Context(surface)

        cr.translate(width / 2, height / 2)
        cr.scale(scale, scale)
        cr.translate(-(min_x + max_x) / 2, -(min_y + max_y) / 2)

        self._paint(cr, mind_map, by_id, result)

        surface.finish()
        return True

    def _draw_connection(self, cr, parent: RenderNode, child: RenderNode, node_width: float):
        """Draw a vertical bezier from the parent's bottom to the child's top."""
        start_x = parent.x + node_width / 2
        start_y = parent.y + self.NODE_HEIGHT
        end_x = child.x + node_width / 2
        end_y = child.y
        mid_y = (start_y + end_y) / 2

        cr.set_source_rgba(*self.COLORS['accent'], 0.7)
        cr.set_line_width(2)
        cr.set_line_cap(cairo.LINE_CAP_ROUND)
        cr.move_to(start_x, start_y)
        cr.curve_to(start_x, mid_y, end_x, mid_y, end_x, end_y)
        cr.stroke()

    def _draw_node(self, cr, node: Node, rendered: RenderNode, node_width: float):
        x, y, h = rendered.x, rendered.y, self.NODE_HEIGHT
        is_root = rendered.level == 0

        self._draw_rounded_rect(cr, x, y, node_width, h, 8 if is_root else 6)
        cr.set_source_rgb(*self.COLORS['surface'])
        cr.fill_preserve()

        if rendered.is_dangling:
            cr.set_source_rgb(*self.COLORS['dangling'])
        elif is_root:
            cr.set_source_rgb(*self.COLORS['accent'])
        else:
            cr.set_source_rgb(*self.COLORS['border'])
        cr.set_line_width(2 if is_root else 1)
        cr.stroke()

        title = node.title
        if len(title) > self.MAX_TITLE_CHARS:
            title = title[:self.MAX_TITLE_CHARS - 1] + "…"

        cr.set_source_rgb(*self.COLORS['text_primary'])
        cr.select_font_face("Sans", cairo.FONT_SLANT_NORMAL,
                            cairo.FONT_WEIGHT_BOLD if is_root else cairo.FONT_WEIGHT_NORMAL)
        cr.set_font_size(15 if is_root else 13)
        extents = cr.text_extents(title)
        cr.move_to(x + self.NODE_PADDING, y + h / 2 + extents.height / 2 - 2)
        cr.show_text(title)

        if rendered.has_children and rendered.is_collapsed:
            # Collapsed marker in the bottom-right corner
            cr.set_source_rgb(*self.COLORS['text_secondary'])
            cr.set_font_size(11)
            cr.move_to(x + node_width - self.NODE_PADDING - 14, y + h - 6)
            cr.show_text("+")

    def _draw_rounded_rect(self, cr, x, y, w, h, radius):
        """Draw a rounded rectangle path."""
        cr.new_path()
        cr.arc(x + w - radius, y + radius, radius, -math.pi / 2, 0)
        cr.arc(x + w - radius, y + h - radius, radius, 0, math.pi / 2)
        cr.arc(x + radius, y + h - radius, radius, math.pi / 2, math.pi)
        cr.arc(x + radius, y + radius, radius, math.pi, 3 * math.pi / 2)
        cr.close_path()


def safe_filename(title: str, suffix: str) -> str:
    """Build an export file name from a map title."""
    return f"{re.sub(r'[^a-z0-9]', '_', title, flags=re.IGNORECASE)}_mindmap.{suffix}"


def get_export_dir() -> Path:
    """Get the default export directory."""
    export_dir = get_data_dir() / "exports"
    export_dir.mkdir(exist_ok=True)
    return export_dir
