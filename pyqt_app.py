from __future__ import annotations

import pathlib
import sys
from typing import Any, List, Optional

import pandas as pd
import pyqtgraph as pg
from PyQt6 import QtCore, QtGui, QtWidgets

from conformance_viz.analysis import ConformanceSession
from conformance_viz.binning import buckets_to_frame
from conformance_viz.config import VizConfig, color_for_value, load_config
from conformance_viz.logging_config import configure_logging
from conformance_viz.outcomes import MatchingMode, bubble_tooltip, outcome_axis_label
from conformance_viz.selection import ClickTarget, FilterState, ViewMode, empty_state_message, parse_trace_selection
from conformance_viz.sequences import format_sequence
from conformance_viz.trace_store import PayloadFormatError, sequences_from_event_log

CONFIG_PATH = pathlib.Path("conformance_viz.json")
CONFIG: VizConfig = load_config(CONFIG_PATH if CONFIG_PATH.exists() else None)
BASE_LOGGER = configure_logging(CONFIG.log_file)


class PandasTableModel(QtCore.QAbstractTableModel):
    def __init__(self, dataframe: Optional[pd.DataFrame] = None):
        super().__init__()
        self._dataframe = dataframe if dataframe is not None else pd.DataFrame()

    def set_dataframe(self, dataframe: pd.DataFrame):
        self.beginResetModel()
        self._dataframe = dataframe.copy()
        self.endResetModel()

    def rowCount(self, parent: QtCore.QModelIndex = QtCore.QModelIndex()) -> int:  # type: ignore[override]
        if parent.isValid():
            return 0
        return len(self._dataframe.index)

    def columnCount(self, parent: QtCore.QModelIndex = QtCore.QModelIndex()) -> int:  # type: ignore[override]
        if parent.isValid():
            return 0
        return len(self._dataframe.columns)

    def data(self, index: QtCore.QModelIndex, role: int = QtCore.Qt.ItemDataRole.DisplayRole):  # type: ignore[override]
        if not index.isValid() or role not in (QtCore.Qt.ItemDataRole.DisplayRole, QtCore.Qt.ItemDataRole.ToolTipRole):
            return None
        value = self._dataframe.iat[index.row(), index.column()]
        if isinstance(value, tuple):
            return format_sequence(value)
        if pd.isna(value):
            return ""
        return str(value)

    def headerData(  # type: ignore[override]
        self, section: int, orientation: QtCore.Qt.Orientation, role: int = QtCore.Qt.ItemDataRole.DisplayRole
    ):
        if role != QtCore.Qt.ItemDataRole.DisplayRole:
            return None
        if orientation == QtCore.Qt.Orientation.Horizontal:
            try:
                return str(self._dataframe.columns[section])
            except IndexError:
                return None
        return str(section + 1)


class StatsCard(QtWidgets.QFrame):
    def __init__(self, title: str, *, accent: str = "#cb181d"):
        super().__init__()
        self.setObjectName("StatsCard")
        self._accent = accent

        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(12, 12, 12, 12)
        layout.setSpacing(4)

        self.title_label = QtWidgets.QLabel(title.upper())
        self.title_label.setObjectName("StatsCardTitle")
        self.value_label = QtWidgets.QLabel("—")
        self.value_label.setObjectName("StatsCardValue")
        self.setMinimumWidth(140)
        self.setMaximumHeight(96)

        layout.addWidget(self.title_label)
        layout.addStretch(1)
        layout.addWidget(self.value_label)

        self.setStyleSheet(
            f"""
            QFrame#StatsCard {{
                border-radius: 14px;
                background-color: rgba(28, 18, 20, 0.9);
                border-left: 4px solid {self._accent};
            }}
            QLabel#StatsCardTitle {{ color: #c9a0a0; font-size: 10px; letter-spacing: 0.8px; }}
            QLabel#StatsCardValue {{ color: #fff5f0; font-size: 22px; font-weight: 600; }}
            """
        )

    def set_value(self, value: str) -> None:
        self.value_label.setText(str(value))


class SequenceDialog(QtWidgets.QDialog):
    def __init__(self, target: ClickTarget, parent: Optional[QtWidgets.QWidget] = None):
        super().__init__(parent)
        self.setWindowTitle(f"Activity Sequences for {target.label}")
        self.resize(720, 420)

        layout = QtWidgets.QVBoxLayout(self)
        if target.groups:
            sequence_list = QtWidgets.QListWidget()
            for group in target.groups:
                prefix = f"{group.count}× " if group.count > 1 else ""
                sequence_list.addItem(prefix + format_sequence(group.sequence))
            layout.addWidget(sequence_list)
        else:
            layout.addWidget(QtWidgets.QLabel("No sequences available."))

        buttons = QtWidgets.QDialogButtonBox(QtWidgets.QDialogButtonBox.StandardButton.Close)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)


class ConformanceApp(QtWidgets.QMainWindow):
    def __init__(self, config: VizConfig = CONFIG):
        super().__init__()
        self.setWindowTitle("Conformance Explorer (PyQt)")
        self.resize(1280, 900)

        self.logger = BASE_LOGGER.getChild("ui")
        self.logger.info("ConformanceApp initialising.")

        self.config = config
        self.session: Optional[ConformanceSession] = None
        self.filter_state = FilterState()
        self._payload_dir: Optional[pathlib.Path] = None
        self._trace_sequences: Optional[List[Any]] = None

        pg.setConfigOption("background", "transparent")
        pg.setConfigOption("foreground", "#fee0d2")
        pg.setConfigOption("antialias", True)

        self._build_ui()
        self.logger.info("User interface initialised. Awaiting payload selection.")

    # UI construction -----------------------------------------------------
    def _build_ui(self) -> None:
        central_widget = QtWidgets.QWidget()
        self.setCentralWidget(central_widget)
        root_layout = QtWidgets.QVBoxLayout(central_widget)
        root_layout.setContentsMargins(24, 24, 24, 24)
        root_layout.setSpacing(18)

        title = QtWidgets.QLabel("Conformance Explorer")
        title.setStyleSheet("font-size: 28px; font-weight: 700;")
        root_layout.addWidget(title)

        splitter = QtWidgets.QSplitter(QtCore.Qt.Orientation.Horizontal)
        splitter.setChildrenCollapsible(False)
        splitter.addWidget(self._build_controls_panel())
        splitter.addWidget(self._build_main_content())
        splitter.setStretchFactor(0, 0)
        splitter.setStretchFactor(1, 1)
        root_layout.addWidget(splitter, stretch=1)

        self.statusBar().showMessage(f"Open a payload folder to begin. Logging to {self.config.log_file.name}.")

    def _build_controls_panel(self) -> QtWidgets.QWidget:
        container = QtWidgets.QWidget()
        container.setMaximumWidth(340)
        layout = QtWidgets.QVBoxLayout(container)
        layout.setAlignment(QtCore.Qt.AlignmentFlag.AlignTop)

        load_group = QtWidgets.QGroupBox("1. Load Analysis Results")
        load_layout = QtWidgets.QVBoxLayout(load_group)
        open_button = QtWidgets.QPushButton("Open Payload Folder…")
        open_button.clicked.connect(self.open_payload_dir)
        load_layout.addWidget(open_button)
        log_button = QtWidgets.QPushButton("Sequences from Event Log…")
        log_button.clicked.connect(self.open_event_log)
        load_layout.addWidget(log_button)
        layout.addWidget(load_group)

        filter_group = QtWidgets.QGroupBox("2. Conformance Threshold")
        filter_layout = QtWidgets.QVBoxLayout(filter_group)
        self.threshold_slider = QtWidgets.QSlider(QtCore.Qt.Orientation.Horizontal)
        self.threshold_slider.setRange(0, 100)
        self.threshold_slider.valueChanged.connect(self._on_threshold_changed)
        filter_layout.addWidget(self.threshold_slider)
        self.threshold_label = QtWidgets.QLabel("Current Conformance: 0.00")
        filter_layout.addWidget(self.threshold_label)

        filter_layout.addWidget(QtWidgets.QLabel("Trace numbers to compare (comma-separated)"))
        self.trace_input = QtWidgets.QLineEdit()
        self.trace_input.setPlaceholderText("e.g. 15, 19, 45")
        self.trace_input.textChanged.connect(self._on_selection_changed)
        filter_layout.addWidget(self.trace_input)

        reset_button = QtWidgets.QPushButton("Reset")
        reset_button.clicked.connect(self.reset_filters)
        filter_layout.addWidget(reset_button)
        layout.addWidget(filter_group)

        outcome_group = QtWidgets.QGroupBox("3. Desired Outcome")
        outcome_layout = QtWidgets.QFormLayout(outcome_group)
        self.mode_combo = QtWidgets.QComboBox()
        self.mode_combo.addItem("Ends With", MatchingMode.END.value)
        self.mode_combo.addItem("Contains", MatchingMode.CONTAINS.value)
        outcome_layout.addRow("Matching mode", self.mode_combo)
        self.activity_combo = QtWidgets.QComboBox()
        outcome_layout.addRow("Activity", self.activity_combo)
        apply_button = QtWidgets.QPushButton("Apply Outcome")
        apply_button.clicked.connect(self.apply_outcome)
        outcome_layout.addRow(apply_button)
        layout.addWidget(outcome_group)

        layout.addStretch(1)
        return container

    def _build_main_content(self) -> QtWidgets.QWidget:
        container = QtWidgets.QWidget()
        layout = QtWidgets.QVBoxLayout(container)
        layout.setContentsMargins(0, 0, 0, 0)

        cards_layout = QtWidgets.QHBoxLayout()
        steps = self.config.color_steps
        self.stats_cards = {
            "traces": StatsCard("Traces", accent=steps[-3]),
            "avg_conformance": StatsCard("Average conformance", accent=steps[4]),
            "min_conformance": StatsCard("Min conformance", accent=steps[1]),
            "max_conformance": StatsCard("Max conformance", accent=steps[6]),
        }
        for card in self.stats_cards.values():
            cards_layout.addWidget(card, stretch=1)
        layout.addLayout(cards_layout)

        self.tabs = QtWidgets.QTabWidget()
        self.tabs.setDocumentMode(True)

        distribution = QtWidgets.QWidget()
        distribution_layout = QtWidgets.QVBoxLayout(distribution)
        self.distribution_plot = pg.PlotWidget()
        self._configure_plot_widget(self.distribution_plot)
        self.distribution_plot.scene().sigMouseClicked.connect(self._on_distribution_clicked)
        distribution_layout.addWidget(self.distribution_plot, stretch=1)
        self.empty_label = QtWidgets.QLabel("")
        self.empty_label.setStyleSheet("color: #fc9272;")
        distribution_layout.addWidget(self.empty_label)
        distribution_layout.addWidget(QtWidgets.QLabel("Tip: click on a bar to see its activity sequences."))
        self.tabs.addTab(distribution, "Conformance Distribution")

        self.outcome_plot = pg.PlotWidget()
        self._configure_plot_widget(self.outcome_plot)
        self.tabs.addTab(self.outcome_plot, "Conformance vs Outcome")

        self.bucket_table = QtWidgets.QTableView()
        self.bucket_model = PandasTableModel()
        self.bucket_table.setModel(self.bucket_model)
        self.bucket_table.horizontalHeader().setSectionResizeMode(QtWidgets.QHeaderView.ResizeMode.Stretch)
        self.bucket_table.verticalHeader().setVisible(False)
        self.tabs.addTab(self.bucket_table, "Buckets")

        layout.addWidget(self.tabs, stretch=1)
        return container

    def _configure_plot_widget(self, plot: pg.PlotWidget) -> None:
        plot.setMenuEnabled(False)
        item = plot.getPlotItem()
        item.showGrid(x=True, y=True, alpha=0.12)
        item.getViewBox().setBackgroundColor(QtGui.QColor(0, 0, 0, 0))

    def _reset_plot(self, plot: pg.PlotWidget, *, title: str, bottom: str, left: str) -> None:
        plot.clear()
        item = plot.getPlotItem()
        item.setTitle(f"<span style='color:#fee0d2;font-size:13pt;'>{title}</span>")
        item.setLabel("bottom", bottom)
        item.setLabel("left", left)

    # Loading --------------------------------------------------------------
    def open_payload_dir(self) -> None:
        directory = QtWidgets.QFileDialog.getExistingDirectory(self, "Open Payload Folder")
        if not directory:
            return
        self.logger.info("Selected payload folder: %s", directory)
        self._payload_dir = pathlib.Path(directory)
        self._load_session()

    def open_event_log(self) -> None:
        file_path, _ = QtWidgets.QFileDialog.getOpenFileName(
            self, "Open Event Log", "", "Event logs (*.xes *.csv)"
        )
        if not file_path:
            return
        path = pathlib.Path(file_path)
        self.logger.info("Selected event log: %s", path)
        try:
            self._trace_sequences = sequences_from_event_log(path.read_bytes(), kind=path.suffix)
        except (PayloadFormatError, ValueError) as exc:
            self.logger.warning("Event log could not be used for sequences %s: %s", path, exc)
            self._show_warning(str(exc))
            return
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.exception("Failed to read event log %s", path)
            self._show_error(f"Failed to read event log: {exc}")
            return
        if self._payload_dir is not None:
            self._load_session()

    def apply_outcome(self) -> None:
        if self._payload_dir is None:
            self._show_warning("Open a payload folder before defining an outcome.")
            return
        self._load_session(use_outcome_controls=True)

    def _load_session(self, *, use_outcome_controls: bool = False) -> None:
        desired = None
        mode = None
        if use_outcome_controls and self.activity_combo.currentText():
            desired = [self.activity_combo.currentText()]
            mode = self.mode_combo.currentData()
        try:
            self.session = ConformanceSession.from_directory(
                self._payload_dir,
                trace_sequences=self._trace_sequences,
                desired_outcomes=desired,
                matching_mode=mode,
                config=self.config,
            )
        except PayloadFormatError as exc:
            self.logger.warning("Payload error in %s: %s", self._payload_dir, exc)
            self._show_warning(str(exc))
            return
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.exception("Failed to load payloads from %s", self._payload_dir)
            self._show_error(f"Failed to load payloads: {exc}")
            return

        self.logger.info(
            "Session ready: %s traces, %s skipped, outcome=%s %s.",
            len(self.session.store),
            self.session.store.skipped,
            self.session.outcome.matching_mode.value,
            ", ".join(self.session.outcome.desired_outcomes) or "-",
        )
        self._populate_activities()
        self._update_overview()
        # Re-parse the typed selection against the new fitness list; this also refreshes the views.
        self._on_selection_changed(self.trace_input.text())

    def _populate_activities(self) -> None:
        current = self.activity_combo.currentText()
        activities = sorted({step for trace in self.session.store for step in trace.sequence})
        self.activity_combo.blockSignals(True)
        self.activity_combo.clear()
        self.activity_combo.addItems(activities)
        if current in activities:
            self.activity_combo.setCurrentText(current)
        self.activity_combo.blockSignals(False)

    def _update_overview(self) -> None:
        overview = self.session.overview()
        for key, card in self.stats_cards.items():
            value = overview.get(key, "—")
            if isinstance(value, float):
                value = f"{value:.3f}"
            card.set_value(value)
        self.bucket_model.set_dataframe(buckets_to_frame(self.session.buckets))

    # Interaction ----------------------------------------------------------
    def _on_threshold_changed(self, value: int) -> None:
        self.filter_state = self.filter_state.with_threshold(value / 100)
        self.threshold_label.setText(f"Current Conformance: {self.filter_state.threshold:.2f}")
        self.refresh_views()

    def _on_selection_changed(self, text: str) -> None:
        if self.session is None:
            self.filter_state = self.filter_state.with_selection(parse_trace_selection(text))
        else:
            self.filter_state = self.session.select(self.filter_state, text)
        self.refresh_views()

    def reset_filters(self) -> None:
        self.filter_state = self.filter_state.reset()
        self.threshold_slider.blockSignals(True)
        self.threshold_slider.setValue(0)
        self.threshold_slider.blockSignals(False)
        self.trace_input.blockSignals(True)
        self.trace_input.clear()
        self.trace_input.blockSignals(False)
        self.threshold_label.setText("Current Conformance: 0.00")
        self.refresh_views()

    def _on_distribution_clicked(self, event: Any) -> None:
        if self.session is None:
            return
        view_box = self.distribution_plot.getPlotItem().getViewBox()
        point = view_box.mapSceneToView(event.scenePos())
        index = int(round(point.x()))
        if abs(point.x() - index) > 0.4:
            return
        target = self.session.click(self.filter_state, index)
        if target is None:
            return
        self.logger.info("Showing %s sequences for %s.", len(target.groups), target.label)
        SequenceDialog(target, self).exec()

    # Rendering ------------------------------------------------------------
    def refresh_views(self) -> None:
        if self.session is None:
            return
        self._plot_distribution()
        self._plot_outcomes()

    def _plot_distribution(self) -> None:
        view = self.session.view(self.filter_state)
        steps = self.config.color_steps
        if view.mode is ViewMode.ENUMERATED:
            heights = [trace.conformance for trace in view.traces]
            colours = [color_for_value(trace.conformance, steps) for trace in view.traces]
            self._reset_plot(self.distribution_plot, title="Selected Traces", bottom="Traces", left="Conformance")
        else:
            heights = [bucket.trace_count for bucket in view.buckets]
            colours = [color_for_value(bucket.average_conformance, steps) for bucket in view.buckets]
            self._reset_plot(
                self.distribution_plot, title="Conformance Distribution", bottom="Conformance", left="Number of Traces"
            )

        self.empty_label.setText(empty_state_message(view) or "")
        if not heights:
            return
        bars = pg.BarGraphItem(
            x=list(range(len(heights))),
            height=heights,
            width=0.8,
            brushes=[pg.mkBrush(colour) for colour in colours],
            pen=pg.mkPen("#000000", width=1),
        )
        self.distribution_plot.addItem(bars)
        axis = self.distribution_plot.getPlotItem().getAxis("bottom")
        axis.setTicks([list(enumerate(view.labels))])

    def _plot_outcomes(self) -> None:
        outcome = self.session.outcome
        desired = list(outcome.desired_outcomes)
        self._reset_plot(
            self.outcome_plot,
            title="Conformance vs Process Outcome",
            bottom="Conformance",
            left=outcome_axis_label(outcome.matching_mode, desired),
        )
        bubbles = self.session.outcome_bubbles(self.filter_state)
        if not bubbles:
            return
        scatter = pg.ScatterPlotItem(
            x=[bubble.x for bubble in bubbles],
            y=[bubble.y for bubble in bubbles],
            size=[bubble.radius * 2 for bubble in bubbles],
            brush=[pg.mkBrush(color_for_value(bubble.x, self.config.color_steps)) for bubble in bubbles],
            pen=pg.mkPen("#000000", width=1),
            data=[bubble_tooltip(bubble, outcome.matching_mode, desired) for bubble in bubbles],
            hoverable=True,
            tip=lambda x, y, data: data,
        )
        self.outcome_plot.addItem(scatter)
        self.outcome_plot.getPlotItem().setYRange(0, 100, padding=0.08)

    # Messaging ------------------------------------------------------------
    def _show_error(self, message: str) -> None:
        self.logger.error(message)
        QtWidgets.QMessageBox.critical(self, "Error", message)

    def _show_warning(self, message: str) -> None:
        self.logger.warning(message)
        QtWidgets.QMessageBox.warning(self, "Warning", message)


def main() -> None:
    logger = BASE_LOGGER.getChild("runtime")
    logger.info("Starting QApplication event loop.")
    app = QtWidgets.QApplication(sys.argv)
    window = ConformanceApp()
    window.show()
    exit_code = app.exec()
    logger.info("Application closed with exit code %s", exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
