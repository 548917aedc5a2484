"""Application entrypoint."""

from __future__ import annotations

import html
import logging
import mimetypes
import sys
import threading
from pathlib import Path
from typing import Callable, Iterable

from dotenv import load_dotenv

from config import JsonConfigStore
from errors import AppError, InvalidMedia, NotFound
from interfaces import MediaStore
from media_store import LocalMediaStore
from models import (
    ActivityCard,
    CaptureState,
    CaptureStatus,
    Channel,
    ConversationTurn,
    FocusArea,
    MediaAsset,
    MediaContent,
    ResetKind,
    Role,
    SessionMode,
)
from player import SoundDevicePlayer
from playback import SpeechPlaybackController
from recorder import SoundDeviceRecorder
from session_controller import SessionController
from session_store import JsonSessionStore
from speech_gateway import DashscopeSpeechGateway
from suggestion_parser import activity_icon
from vision_gateway import DashscopeVisionGateway
from voice_capture import VoiceCaptureController

try:
    from PySide6.QtCore import QObject, Qt, Signal
    from PySide6.QtGui import QAction
    from PySide6.QtWidgets import (
        QApplication,
        QComboBox,
        QFileDialog,
        QHBoxLayout,
        QInputDialog,
        QLabel,
        QLineEdit,
        QListWidget,
        QListWidgetItem,
        QMainWindow,
        QMessageBox,
        QPushButton,
        QSpinBox,
        QTextBrowser,
        QVBoxLayout,
        QWidget,
    )
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger("picture_coach")


def turns_html(turns: Iterable[ConversationTurn]) -> str:
    return "".join(
        f"<p><b>{'You' if turn.role == Role.USER else 'Assistant'}:</b> {html.escape(turn.text)}</p>"
        for turn in turns
    )


def cards_html(cards: Iterable[ActivityCard]) -> str:
    return "".join(
        f"<h3>{activity_icon(card.title)} {html.escape(card.title)}</h3>"
        f"<p>{html.escape(card.description)}</p>"
        for card in cards
    )


class UIBridge(QObject):
    log_signal = Signal(object)  # tuple[ConversationTurn, ...]
    busy_signal = Signal(bool)
    capture_signal = Signal(str, str)  # state, text
    partial_signal = Signal(str)
    speaking_signal = Signal(bool)
    error_signal = Signal(str)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.config_store = JsonConfigStore()
        self.media_store: MediaStore = LocalMediaStore(Path.home() / ".config" / "picture_coach" / "media")
        self.ui = UIBridge()
        self.ui.log_signal.connect(self._render_log)
        self.ui.busy_signal.connect(self._on_busy_ui)
        self.ui.capture_signal.connect(self._on_capture_ui)
        self.ui.partial_signal.connect(lambda text: self.status.setText(f"🎤 {text}"))
        self.ui.speaking_signal.connect(self._on_speaking_ui)
        self.ui.error_signal.connect(self._on_error_ui)

        self.controller = self._build_controller(self.config_store.effective_api_key())
        self.window = QMainWindow()
        self.window.setWindowTitle("Picture Coach")
        self._build_window()
        self._setup_menu()

        self.controller.restore()
        self._reattach_stored_media()
        self._refresh_media()
        self._render_log(self.controller.log)

    def _build_controller(self, api_key: str) -> SessionController:
        speech = DashscopeSpeechGateway(
            api_key=api_key,
            asr_model=self.config_store.get_model("asr_model"),
            tts_model=self.config_store.get_model("tts_model"),
            tts_voice=self.config_store.get_model("tts_voice"),
        )
        voice = VoiceCaptureController(
            recorder=SoundDeviceRecorder(),
            speech=speech,
            on_state_change=self._on_capture_change,
            on_partial=self.ui.partial_signal.emit,
            on_error=self._on_error,
        )
        playback = SpeechPlaybackController(
            speech=speech,
            player=SoundDevicePlayer(),
            on_speaking_change=self.ui.speaking_signal.emit,
            on_error=self._on_error,
        )
        return SessionController(
            ai=DashscopeVisionGateway(api_key=api_key, model=self.config_store.get_model("vision_model")),
            voice=voice,
            playback=playback,
            store=JsonSessionStore(),
            suggestion_count=self.config_store.get_suggestion_count(),
            on_log_change=self.ui.log_signal.emit,
            on_busy_change=self.ui.busy_signal.emit,
            on_error=self._on_error,
        )

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _build_window(self) -> None:
        root = QWidget()
        layout = QHBoxLayout(root)

        side = QVBoxLayout()
        self.media_list = QListWidget()
        self.media_list.itemClicked.connect(self._on_media_clicked)
        add_button = QPushButton("Add Images")
        add_button.clicked.connect(self._add_images)
        remove_button = QPushButton("Remove Image")
        remove_button.clicked.connect(self._remove_image)
        self.age_input = QSpinBox()
        self.age_input.setRange(0, 18)
        self.age_input.setSpecialValueText("Age")
        self.age_input.valueChanged.connect(
            lambda value: self.controller.set_child_age(value or None)
        )
        self.focus_input = QComboBox()
        self.focus_input.addItem("Choose a focus area", None)
        for focus in FocusArea:
            self.focus_input.addItem(focus.value, focus)
        self.focus_input.currentIndexChanged.connect(
            lambda _: self.controller.set_focus_area(self.focus_input.currentData())
        )
        self.mode_input = QComboBox()
        self.mode_input.addItem("Conversation", SessionMode.CONVERSATION)
        self.mode_input.addItem("Activity Suggestions", SessionMode.SUGGESTION)
        self.mode_input.currentIndexChanged.connect(self._on_mode_changed)
        self.channel_input = QComboBox()
        self.channel_input.addItem("Text", Channel.TEXT)
        self.channel_input.addItem("Voice", Channel.VOICE)
        self.channel_input.currentIndexChanged.connect(self._on_channel_changed)
        for widget in (
            self.media_list,
            add_button,
            remove_button,
            QLabel("Child's age"),
            self.age_input,
            QLabel("Focus area"),
            self.focus_input,
            QLabel("Mode"),
            self.mode_input,
            self.channel_input,
        ):
            side.addWidget(widget)

        main = QVBoxLayout()
        self.view = QTextBrowser()
        self.status = QLabel("")
        self.starters = QComboBox()
        self.starters.activated.connect(self._on_starter)
        self.input = QLineEdit()
        self.input.setPlaceholderText("Type your message...")
        self.input.returnPressed.connect(self._send_text)
        self.send_button = QPushButton("Start")
        self.send_button.clicked.connect(self._send_text)
        self.record_button = QPushButton("🎤 Record")
        self.record_button.clicked.connect(self._toggle_recording)
        self.play_button = QPushButton("🔊 Play last")
        self.play_button.clicked.connect(self._play_last)

        row = QHBoxLayout()
        for widget in (self.input, self.send_button, self.record_button, self.play_button):
            row.addWidget(widget)
        main.addWidget(self.view, 1)
        main.addWidget(self.starters)
        main.addWidget(self.status)
        main.addLayout(row)

        layout.addLayout(side, 1)
        layout.addLayout(main, 3)
        self.window.setCentralWidget(root)
        self.window.resize(1000, 700)
        self._sync_controls()

    def _setup_menu(self) -> None:
        menu = self.window.menuBar().addMenu("Session")

        api_action = QAction("Set API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        export_action = QAction("Export Conversation", menu)
        export_action.triggered.connect(self._export)
        menu.addAction(export_action)

        clear_action = QAction("Clear Conversation", menu)
        clear_action.triggered.connect(lambda: self.controller.reset(ResetKind.CLEAR_TURNS))
        menu.addAction(clear_action)

        clear_all_action = QAction("Clear All Data", menu)
        clear_all_action.triggered.connect(self._clear_all)
        menu.addAction(clear_all_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_capture_change(self, _: CaptureStatus, status: CaptureStatus) -> None:
        self.ui.capture_signal.emit(status.state.value, status.text)

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(f"{code}: {message}")

    def _in_background(self, fn: Callable[[], object]) -> None:
        def _run() -> None:
            try:
                fn()
            except AppError as exc:
                self.ui.error_signal.emit(exc.message)
            except Exception as exc:
                logger.exception("background task failed")
                self.ui.error_signal.emit(str(exc))

        threading.Thread(target=_run, daemon=True).start()

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _render_log(self, turns: tuple[ConversationTurn, ...]) -> None:
        config = self.controller.config
        if config.mode == SessionMode.SUGGESTION:
            self.view.setHtml(cards_html(self.controller.latest_cards()))
        else:
            self.view.setHtml(turns_html(turns))
        if config.mode == SessionMode.SUGGESTION:
            self.send_button.setText("Get Suggestions")
        else:
            self.send_button.setText("Send" if turns else "Start")

    def _on_busy_ui(self, busy: bool) -> None:
        self.status.setText("Thinking..." if busy else "")
        self.send_button.setEnabled(not busy)
        self.record_button.setEnabled(not busy)

    def _on_capture_ui(self, state: str, text: str) -> None:
        if state == CaptureState.RECORDING.value:
            self.record_button.setText("⏹ Stop")
            self.status.setText("🎤 Recording... click Stop when finished")
        elif state == CaptureState.TRANSCRIBING.value:
            self.record_button.setText("🎤 Record")
            self.status.setText("Transcribing...")
        elif state == CaptureState.STAGED.value:
            self.input.setText(text)
            self.status.setText("Press Send to use your message")
        else:
            self.record_button.setText("🎤 Record")

    def _on_speaking_ui(self, speaking: bool) -> None:
        self.play_button.setText("Playing..." if speaking else "🔊 Play last")

    def _on_error_ui(self, msg: str) -> None:
        self.status.setText(f"⚠️ {msg}")
        self.controller.voice.acknowledge()

    def _refresh_media(self) -> None:
        self.media_list.clear()
        for asset in self.controller.media:
            label = asset.display_name + (" (add again)" if asset.needs_content else "")
            item = QListWidgetItem(label)
            item.setData(Qt.UserRole, asset.id)
            self.media_list.addItem(item)

    def _sync_controls(self) -> None:
        config = self.controller.config
        voice = config.channel == Channel.VOICE
        conversation = config.mode == SessionMode.CONVERSATION
        self.channel_input.setEnabled(conversation)
        self.record_button.setVisible(conversation and voice)
        self.play_button.setVisible(conversation and voice)
        self.input.setVisible(conversation)
        self.starters.setVisible(conversation)
        self.starters.clear()
        self.starters.addItem("Conversation starters...")
        self.starters.addItems(self.controller.starters())

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def _add_images(self) -> None:
        paths, _ = QFileDialog.getOpenFileNames(
            self.window, "Add Images", "", "Images (*.png *.jpg *.jpeg *.gif *.webp)"
        )
        for raw in paths:
            path = Path(raw)
            mime_type = mimetypes.guess_type(path.name)[0] or ""
            data = path.read_bytes()
            existing = next((a for a in self.controller.media if a.display_name == path.name and a.needs_content), None)
            try:
                if existing is not None:
                    self.controller.provide_content(existing.id, MediaContent(data, mime_type))
                    continue
                if not mime_type.startswith("image/"):
                    raise InvalidMedia(f"{path.name} is not an image")
                record = self.media_store.put(path.name, data, mime_type)
                self.controller.add_media(
                    MediaAsset(
                        id=record.id,
                        display_name=record.name,
                        mime_type=record.type,
                        byte_size=record.size,
                        content=MediaContent(data, mime_type),
                        url=record.url,
                    )
                )
            except AppError as exc:
                self.status.setText(f"⚠️ {exc.message}")
        self._refresh_media()

    def _reattach_stored_media(self) -> None:
        """Give restored assets their bytes back from the media directory."""
        waiting = {a.id for a in self.controller.media if a.needs_content}
        for record in self.media_store.list_records():
            if record.id not in waiting:
                continue
            try:
                data = self.media_store.read(record)
            except OSError:
                logger.warning("stored media %s is missing", record.id)
                continue
            self.controller.provide_content(record.id, MediaContent(data, record.type))

    def _remove_image(self) -> None:
        item = self.media_list.currentItem()
        if item is None:
            return
        asset_id = item.data(Qt.UserRole)
        self.controller.remove_media(asset_id)
        try:
            self.media_store.delete(asset_id)
        except NotFound:
            logger.info("media %s had no stored copy", asset_id)
        except AppError as exc:
            logger.warning("could not delete stored media %s: %s", asset_id, exc.message)
        self._refresh_media()

    def _on_media_clicked(self, item: QListWidgetItem) -> None:
        asset_id = item.data(Qt.UserRole)
        asset = next(a for a in self.controller.media if a.id == asset_id)
        try:
            self.controller.select_media(asset)
        except AppError as exc:
            QMessageBox.warning(self.window, "Image unavailable", exc.message)
            return
        self.input.clear()
        self.status.setText(f"Selected {asset.display_name}")

    def _on_mode_changed(self, _: int) -> None:
        self.controller.set_mode(self.mode_input.currentData())
        self.channel_input.blockSignals(True)
        self.channel_input.setCurrentIndex(self.channel_input.findData(self.controller.config.channel))
        self.channel_input.blockSignals(False)
        self.input.clear()
        self._sync_controls()
        self._render_log(self.controller.log)

    def _on_channel_changed(self, _: int) -> None:
        self.controller.set_channel(self.channel_input.currentData())
        self.input.clear()
        self._sync_controls()

    def _on_starter(self, index: int) -> None:
        if index <= 0:
            return
        starter = self.starters.itemText(index)
        self.starters.setCurrentIndex(0)
        if self.controller.config.channel == Channel.TEXT:
            self.input.setText(starter)
        else:
            self._in_background(lambda: self.controller.request_turn(starter))

    def _send_text(self) -> None:
        text = self.input.text()
        self.input.clear()
        if self.controller.config.channel == Channel.VOICE and text == self.controller.voice.status.text:
            self._in_background(lambda: self.controller.request_turn(None))
        else:
            self._in_background(lambda: self.controller.request_turn(text))

    def _toggle_recording(self) -> None:
        voice = self.controller.voice
        if voice.state == CaptureState.RECORDING:
            # stop blocks on transcription, keep it off the Qt thread
            self._in_background(voice.stop)
            return
        voice.acknowledge()
        voice.discard_staged()
        try:
            voice.start()
        except AppError as exc:
            self.status.setText(f"⚠️ {exc.message}")
            voice.acknowledge()

    def _play_last(self) -> None:
        turn = next((t for t in reversed(self.controller.log) if t.role == Role.ASSISTANT), None)
        if turn is not None:
            self._in_background(lambda: self.controller.playback.speak(turn.text))

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(self.window, "API Key", "DashScope API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        QMessageBox.information(self.window, "Saved", "API Key saved. Restart app to apply.")

    def _export(self) -> None:
        directory = QFileDialog.getExistingDirectory(self.window, "Export Conversation")
        if not directory:
            return
        path = self.controller.export_conversation(Path(directory))
        self.status.setText(f"Conversation saved to {path}" if path else "Nothing to export")

    def _clear_all(self) -> None:
        self.controller.reset(ResetKind.CLEAR_ALL)
        removed = self.media_store.clear()
        logger.info("cleared %d stored images", removed)
        self._refresh_media()
        self.status.setText("All data cleared")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        self.window.show()
        return self.app.exec()

    def quit(self) -> None:
        self.controller.voice.cancel()
        self.controller.playback.stop()
        self.app.quit()


def main() -> int:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
