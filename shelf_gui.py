# shelf_gui.py
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QColor
from PySide6.QtWidgets import (
    QApplication,
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QListWidget,
    QListWidgetItem,
    QMessageBox,
    QPushButton,
    QTreeWidget,
    QTreeWidgetItem,
    QVBoxLayout,
    QWidget,
)

from shelf_core import (
    COLLECTION_TYPES,
    CONDITIONS,
    FORMATS,
    CollectionDB,
    CollectionItem,
    CollectionService,
    MergeError,
    MergeSession,
    TMDBClient,
    TmdbChoice,
    configure_logging,
    default_db_path,
    default_user_id,
)

logger = logging.getLogger(__name__)


def app_dir() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def item_to_display_text(it: CollectionItem) -> str:
    year = str(it.year) if it.year else "?"
    rating = f" | {it.personal_rating}/10" if it.personal_rating else ""
    return f"{it.title} ({year})  [{it.format}]  {it.condition} | {it.collection_type}{rating}"


def qt_schedule(delay_s: float, fn) -> None:
    QTimer.singleShot(int(delay_s * 1000), fn)


class PickDialog(QDialog):

    def __init__(self, choices: list[TmdbChoice], parent: QWidget | None = None):
        super().__init__(parent)
        self.setWindowTitle("Pick a match")
        self.setModal(True)
        self.setMinimumSize(600, 300)
        self.selected: Optional[TmdbChoice] = None
        layout = QVBoxLayout(self)

        layout.addWidget(QLabel("Select the correct movie:"))

        self.list = QListWidget()
        for c in choices:
            year = c.year if c.year else "?"
            overview = (c.overview or "").replace("\n", " ")
            if len(overview) > 160:
                overview = overview[:157] + "..."
            item = QListWidgetItem(f"{c.title} ({year}): {overview}")
            item.setData(Qt.ItemDataRole.UserRole, c)
            self.list.addItem(item)

        self.list.itemDoubleClicked.connect(self._accept_selected)
        layout.addWidget(self.list)

        row = QHBoxLayout()
        row.addWidget(QLabel("Format:"))
        self.format_box = QComboBox()
        self.format_box.addItems(list(FORMATS))
        row.addWidget(self.format_box)
        row.addWidget(QLabel("Condition:"))
        self.condition_box = QComboBox()
        self.condition_box.addItems(list(CONDITIONS))
        row.addWidget(self.condition_box)
        row.addStretch(1)
        layout.addLayout(row)

        buttons = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
        buttons.accepted.connect(self._accept_selected)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

        if self.list.count() > 0:
            self.list.setCurrentRow(0)

    def _accept_selected(self):
        item = self.list.currentItem()
        if not item:
            QMessageBox.information(self, "No selection", "Please select an item.")
            return
        self.selected = item.data(Qt.ItemDataRole.UserRole)
        self.accept()


class LocalAddDialog(QDialog):
    def __init__(self, typed_title: str, parent: QWidget | None = None):
        super().__init__(parent)
        self.setWindowTitle("Add to shelf")
        self.setModal(True)
        self.values: Optional[dict] = None
        self.typed_title = typed_title

        layout = QVBoxLayout(self)
        layout.addWidget(QLabel(f'Title: "{typed_title}"'))

        row = QHBoxLayout()
        row.addWidget(QLabel("Format:"))
        self.format_box = QComboBox()
        self.format_box.addItems(list(FORMATS))
        row.addWidget(self.format_box)

        row.addWidget(QLabel("Condition:"))
        self.condition_box = QComboBox()
        self.condition_box.addItems(list(CONDITIONS))
        row.addWidget(self.condition_box)

        row.addWidget(QLabel("Status:"))
        self.status_box = QComboBox()
        self.status_box.addItems(list(COLLECTION_TYPES))
        row.addWidget(self.status_box)
        row.addStretch(1)
        layout.addLayout(row)

        self.notes = QLineEdit()
        self.notes.setPlaceholderText("Notes (optional)")
        layout.addWidget(self.notes)

        buttons = QDialogButtonBox(QDialogButtonBox.Yes | QDialogButtonBox.No)
        buttons.button(QDialogButtonBox.Yes).setText("Add")
        buttons.button(QDialogButtonBox.No).setText("Cancel")
        buttons.accepted.connect(self._accept)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

    def _accept(self):
        self.values = {
            "title": self.typed_title,
            "format": self.format_box.currentText(),
            "condition": self.condition_box.currentText(),
            "collection_type": self.status_box.currentText(),
            "notes": self.notes.text(),
        }
        self.accept()


class DuplicateDialog(QDialog):
    """Review duplicate groups, pick keepers and merge. A view over MergeSession."""

    def __init__(self, session: MergeSession, parent: QWidget | None = None):
        super().__init__(parent)
        self.setWindowTitle("Duplicate Management")
        self.setModal(True)
        self.setMinimumSize(820, 480)
        self.session = session
        self.merged_any = False

        layout = QVBoxLayout(self)

        self.summary = QLabel()
        layout.addWidget(self.summary)

        self.status = QLabel()
        self.status.setWordWrap(True)
        layout.addWidget(self.status)

        self.tree = QTreeWidget()
        self.tree.setColumnCount(6)
        self.tree.setHeaderLabels(["Item", "Condition", "Score", "Purchase", "Rating", ""])
        self.tree.itemClicked.connect(self.on_item_clicked)
        layout.addWidget(self.tree, 1)

        row = QHBoxLayout()
        self.auto_btn = QPushButton("Auto-Select Best")
        self.auto_btn.clicked.connect(self.on_auto_select)
        row.addWidget(self.auto_btn)

        self.merge_btn = QPushButton("Merge Selected")
        self.merge_btn.clicked.connect(self.on_merge)
        row.addWidget(self.merge_btn)

        self.refresh_btn = QPushButton("Check Again")
        self.refresh_btn.clicked.connect(self.on_refresh)
        row.addWidget(self.refresh_btn)

        row.addStretch(1)
        close = QPushButton("Close")
        close.clicked.connect(self.accept)
        row.addWidget(close)
        layout.addLayout(row)

        self.populate()

    def populate(self):
        s = self.session
        self.tree.clear()

        if not s.groups:
            self.summary.setText("No duplicates found! Your collection looks clean.")
        else:
            self.summary.setText(
                f"Found {s.total_duplicates} duplicate items in {len(s.groups)} groups. "
                "Select which item to keep from each group, then merge to remove duplicates."
            )

        if s.error:
            self.status.setText(s.error)
            self.status.setStyleSheet("color: #b00020;")
        elif s.message:
            self.status.setText(s.message)
            self.status.setStyleSheet("color: #1b7f3a;")
        else:
            self.status.clear()

        for gi, (group, scored) in enumerate(zip(s.groups, s.scores())):
            year = group.year if group.year else "?"
            top = QTreeWidgetItem([f"Group {gi + 1}: {group.title} ({year})"])
            top.setFirstColumnSpanned(True)
            self.tree.addTopLevelItem(top)

            keep_id = s.decisions.get(gi)
            for it, score, is_suggested in scored:
                purchase = " ".join(
                    p for p in (
                        it.purchase_date or "",
                        f"${it.purchase_price:.2f}" if it.purchase_price is not None else "",
                        it.purchase_location or "",
                    ) if p
                )
                marker = "KEEP" if it.id == keep_id else ("SUGGESTED" if is_suggested else "")
                child = QTreeWidgetItem([
                    it.format,
                    it.condition,
                    str(score),
                    purchase,
                    f"{it.personal_rating}/10" if it.personal_rating else "",
                    marker,
                ])
                child.setData(0, Qt.ItemDataRole.UserRole, (gi, it.id))
                if marker == "KEEP":
                    child.setForeground(5, QColor(27, 127, 58))
                elif marker:
                    child.setForeground(5, QColor(30, 90, 200))
                top.addChild(child)
            top.setExpanded(True)

        merging = s.state == "merging"
        self.auto_btn.setEnabled(bool(s.groups) and not merging and s.state != "merged")
        self.merge_btn.setEnabled(bool(s.decisions) and not merging)
        self.merge_btn.setText(f"Merge Selected ({len(s.decisions)})")
        self.refresh_btn.setEnabled(not merging)

    def on_item_clicked(self, item: QTreeWidgetItem, _column: int):
        data = item.data(0, Qt.ItemDataRole.UserRole)
        if not data:
            return
        gi, item_id = data
        try:
            self.session.select_keeper(gi, item_id)
        except (ValueError, RuntimeError) as e:
            QMessageBox.information(self, "Select keeper", str(e))
            return
        self.populate()

    def on_auto_select(self):
        try:
            self.session.auto_select_best()
        except RuntimeError as e:
            QMessageBox.information(self, "Auto-select", str(e))
            return
        self.populate()

    def on_merge(self):
        n = len(self.session.decisions)
        btn = QMessageBox.question(
            self,
            "Merge duplicates",
            f"Merge {n} group(s)? Items not marked KEEP will be deleted.",
            QMessageBox.Yes | QMessageBox.No,
        )
        if btn != QMessageBox.Yes:
            return

        self.merge_btn.setEnabled(False)
        try:
            self.session.merge_selected()
        except (MergeError, ValueError) as e:
            logger.error("Merge error: %s", e)
        self.merged_any = self.merged_any or self.session.last_removed > 0
        self.populate()
        if self.session.state == "merged":
            QTimer.singleShot(int(self.session.refresh_delay_s * 1000) + 50, self.populate)

    def on_refresh(self):
        self.session.refresh()
        self.populate()


class MainWindow(QWidget):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("Disc Shelf")
        self.resize(900, 600)

        self.db = CollectionDB(default_db_path(app_dir()))
        self.db.init_db()

        self.service = CollectionService(db=self.db, user_id=default_user_id(), tmdb=TMDBClient())

        # --- UI ---
        root = QVBoxLayout(self)

        top = QHBoxLayout()
        self.input = QLineEdit()
        self.input.setPlaceholderText("Type a title and press Enter to search TMDB…")
        top.addWidget(self.input)

        self.tmdb_btn = QPushButton("Search TMDB")
        self.tmdb_btn.clicked.connect(self.on_search_tmdb)
        top.addWidget(self.tmdb_btn)

        self.add_local_btn = QPushButton("Add local")
        self.add_local_btn.clicked.connect(self.on_add_local)
        top.addWidget(self.add_local_btn)

        self.input.returnPressed.connect(self.on_search_tmdb)
        root.addLayout(top)

        filters = QHBoxLayout()
        filters.addWidget(QLabel("Status:"))
        self.status_filter = QComboBox()
        self.status_filter.addItems(["all", *COLLECTION_TYPES])
        self.status_filter.currentIndexChanged.connect(self.refresh_list)
        filters.addWidget(self.status_filter)

        filters.addWidget(QLabel("Sort:"))
        self.sort_by = QComboBox()
        self.sort_by.addItems(["Recently added", "Title (A→Z)", "Year (new→old)"])
        self.sort_by.currentIndexChanged.connect(self.refresh_list)
        filters.addWidget(self.sort_by)

        filters.addStretch(1)

        self.dupes_btn = QPushButton("Duplicates")
        self.dupes_btn.clicked.connect(self.on_duplicates)
        filters.addWidget(self.dupes_btn)
        root.addLayout(filters)

        self.list = QListWidget()
        self.list.itemSelectionChanged.connect(self.on_selection_changed)
        root.addWidget(self.list, 1)

        bottom = QHBoxLayout()
        bottom.addWidget(QLabel("Move to:"))
        self.move_box = QComboBox()
        self.move_box.addItems(list(COLLECTION_TYPES))
        bottom.addWidget(self.move_box)

        self.move_btn = QPushButton("Move")
        self.move_btn.setEnabled(False)
        self.move_btn.clicked.connect(self.on_move)
        bottom.addWidget(self.move_btn)

        self.refresh_btn = QPushButton("Refresh")
        self.refresh_btn.clicked.connect(self.refresh_list)
        bottom.addWidget(self.refresh_btn)

        self.delete_btn = QPushButton("Delete")
        self.delete_btn.setEnabled(False)
        self.delete_btn.clicked.connect(self.on_delete)
        bottom.addWidget(self.delete_btn)

        self.specs_btn = QPushButton("Queue specs lookup")
        self.specs_btn.setEnabled(False)
        self.specs_btn.clicked.connect(self.on_queue_specs)
        bottom.addWidget(self.specs_btn)

        bottom.addStretch(1)
        root.addLayout(bottom)

        self.refresh_list()

    # ------------- Data helpers -------------
    def refresh_list(self):
        status = self.status_filter.currentText()
        items = self.service.list_items(collection_type=None if status == "all" else status)  # type: ignore[arg-type]

        mode = self.sort_by.currentText()
        if mode == "Title (A→Z)":
            items.sort(key=lambda it: (it.title or "").lower())
        elif mode == "Year (new→old)":
            items.sort(key=lambda it: (it.year is None, -(it.year or 0), (it.title or "").lower()))

        self.list.clear()
        for it in items:
            w = QListWidgetItem(item_to_display_text(it))
            w.setData(Qt.ItemDataRole.UserRole, it.id)
            if it.collection_type in ("missing", "loaned_out"):
                w.setForeground(QColor(170, 170, 170))
            self.list.addItem(w)

        groups = self.service.find_duplicates()
        self.dupes_btn.setText(f"Duplicates ({len(groups)})" if groups else "Duplicates")
        self.on_selection_changed()

    def selected_item_id(self) -> Optional[str]:
        item = self.list.currentItem()
        if not item:
            return None
        return str(item.data(Qt.ItemDataRole.UserRole))

    # ------------- UI actions -------------
    def on_selection_changed(self):
        has = self.selected_item_id() is not None
        self.delete_btn.setEnabled(has)
        self.move_btn.setEnabled(has)
        self.specs_btn.setEnabled(has)

    def on_delete(self):
        item_id = self.selected_item_id()
        if not item_id:
            return
        try:
            it = self.service.get_item(item_id)
        except LookupError:
            self.refresh_list()
            return

        btn = QMessageBox.question(
            self,
            "Delete entry",
            f'Delete "{it.title}" ({it.format}) from your shelf?',
            QMessageBox.Yes | QMessageBox.No,
        )
        if btn != QMessageBox.Yes:
            return

        try:
            self.service.remove_item(item_id)
        except LookupError as e:
            QMessageBox.warning(self, "Delete failed", str(e))
        self.refresh_list()

    def on_queue_specs(self):
        item_id = self.selected_item_id()
        if not item_id:
            return
        try:
            self.service.request_specs_lookup(item_id)
        except LookupError as e:
            QMessageBox.warning(self, "Specs lookup", str(e))
            return
        QMessageBox.information(self, "Specs lookup", "Technical specs lookup queued.")

    def on_move(self):
        item_id = self.selected_item_id()
        if not item_id:
            return
        try:
            self.service.move_to(item_id, self.move_box.currentText())  # type: ignore[arg-type]
        except (LookupError, ValueError) as e:
            QMessageBox.warning(self, "Move failed", str(e))
            return
        self.refresh_list()

    def on_search_tmdb(self):
        typed = self.input.text().strip()
        if not typed:
            return

        try:
            choices = self.service.tmdb_search(typed, limit=8)
        except Exception as e:
            QMessageBox.warning(self, "TMDB error", str(e))
            return

        if not choices:
            QMessageBox.information(self, "TMDB search", "No TMDB results found.")
            return

        pick = PickDialog(choices, parent=self)
        if not (pick.exec() == QDialog.Accepted and pick.selected):
            return

        r = self.service.add_from_tmdb(
            pick.selected,
            format=pick.format_box.currentText(),  # type: ignore[arg-type]
            condition=pick.condition_box.currentText(),  # type: ignore[arg-type]
        )
        if r.status == "added":
            self.input.clear()
            self.refresh_list()
        elif r.status == "exists" and r.item:
            QMessageBox.information(self, "Already on your shelf", item_to_display_text(r.item))
        else:
            QMessageBox.warning(self, "Not added", r.message or "Error")

    def on_add_local(self):
        typed = self.input.text().strip()
        if not typed:
            return

        dlg = LocalAddDialog(typed, parent=self)
        if dlg.exec() != QDialog.Accepted or not dlg.values:
            return
        try:
            it = self.service.add_item(dlg.values)
        except ValueError as e:
            QMessageBox.warning(self, "Not added", str(e))
            return
        QMessageBox.information(self, "Added", item_to_display_text(it))
        self.input.clear()
        self.refresh_list()

    def on_duplicates(self):
        session = self.service.new_merge_session(schedule=qt_schedule)
        dlg = DuplicateDialog(session, parent=self)
        dlg.exec()
        if dlg.merged_any:
            self.refresh_list()


def main():
    configure_logging()
    app = QApplication(sys.argv)
    w = MainWindow()
    w.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
