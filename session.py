import logging
import time
from collections import OrderedDict
from enum import Enum
from typing import Callable, List, Optional

from fastapi.concurrency import run_in_threadpool

import config
from analyzer import GENERIC_FAILURE, AnalysisError
from image_io import FileReadError, read_image
from schemas import AnalysisHistoryItem, AnalysisResult, Feedback, FeedbackEvent, FeedbackStatus

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    READING = "reading"
    ANALYZING = "analyzing"
    DISPLAYING = "displaying"


BUSY_PHASES = (Phase.READING, Phase.ANALYZING)


class SessionBusy(RuntimeError):
    pass


class HistoryItemNotFound(LookupError):
    pass


class FeedbackAlreadySubmitted(RuntimeError):
    pass


class AnalysisSession:
    """
    Application state of one client: the current result/image slot plus a
    bounded, most-recent-first history. Only this object writes to them.

    Lifecycle: idle -> reading -> analyzing -> displaying -> (reset) idle.
    """

    def __init__(self, analyzer, history_limit: int = config.HISTORY_LIMIT, clock: Callable[[], float] = time.time):
        self.analyzer = analyzer
        self.history_limit = history_limit
        self.clock = clock

        self.phase = Phase.IDLE
        self.transitions: List[Phase] = [Phase.IDLE]
        self.history: List[AnalysisHistoryItem] = []
        self.current_result: Optional[AnalysisResult] = None
        self.current_image_url: Optional[str] = None
        self.error: Optional[str] = None
        self.closed = False

    # ---------- state helpers ----------
    @property
    def is_reading(self) -> bool:
        return self.phase == Phase.READING

    @property
    def is_analyzing(self) -> bool:
        return self.phase == Phase.ANALYZING

    @property
    def busy(self) -> bool:
        return self.phase in BUSY_PHASES

    def _enter(self, phase: Phase):
        logger.debug("session %x: %s -> %s", id(self), self.phase.value, phase.value)
        self.phase = phase
        self.transitions.append(phase)

    def _ensure_idle_slot(self, action: str):
        if self.busy:
            raise SessionBusy(f"cannot {action} while {self.phase.value}")

    def _new_id(self, now_ms: int) -> str:
        # time-derived; bumped on collision so ids stay unique in this session
        taken = {item.id for item in self.history}
        candidate = now_ms
        while str(candidate) in taken:
            candidate += 1
        return str(candidate)

    def _fail(self, message: str):
        self.current_result = None
        self.error = message
        self._enter(Phase.DISPLAYING)

    # ---------- transitions ----------
    async def select_file(self, image_bytes: Optional[bytes], filename: str = "") -> Phase:
        """Read the chosen file, analyze it and display the outcome."""
        if image_bytes is None or (not image_bytes and not filename):
            return self.phase  # no file chosen
        self._ensure_idle_slot("upload")

        self.error = None
        self.current_result = None
        self.current_image_url = None
        self._enter(Phase.READING)
        try:
            payload = await run_in_threadpool(read_image, image_bytes, filename)
        except FileReadError as e:
            if self.closed:
                logger.info("Discarding read failure for closed session: %s", e)
                return self.phase
            logger.warning("File read failed: %s", e)
            self._fail(FileReadError.user_message)
            return self.phase

        if self.closed:
            logger.info("Session closed while reading %r, dropping upload", filename)
            return self.phase

        self.current_image_url = payload.data_url
        self._enter(Phase.ANALYZING)
        try:
            result = await self.analyzer.analyze(payload)
        except AnalysisError as e:
            if self.closed:
                logger.info("Discarding analysis failure for closed session: %s", e)
                return self.phase
            logger.error("Analysis failed (%s): %s", type(e).__name__, e)
            self._fail(e.user_message)
            return self.phase
        except Exception:
            if not self.closed:
                self._fail(GENERIC_FAILURE)
            raise

        if self.closed:
            logger.info("Session closed during analysis, discarding result")
            return self.phase

        now_ms = int(self.clock() * 1000)
        item = AnalysisHistoryItem.from_result(
            result,
            item_id=self._new_id(now_ms),
            timestamp=now_ms,
            image_url=payload.data_url,
        )
        self.history.insert(0, item)
        del self.history[self.history_limit:]

        self.current_result = item
        self._enter(Phase.DISPLAYING)
        logger.info("Analysis %s: %s, health %d", item.id, item.stage.value, item.health_score)
        return self.phase

    def find_item(self, item_id: str) -> AnalysisHistoryItem:
        for item in self.history:
            if item.id == item_id:
                return item
        raise HistoryItemNotFound(item_id)

    def select_history_item(self, item_id: str) -> AnalysisHistoryItem:
        self._ensure_idle_slot("open history")
        item = self.find_item(item_id)
        self.current_result = item
        self.current_image_url = item.image_url
        self.error = None
        self._enter(Phase.DISPLAYING)
        return item

    def reset(self):
        self._ensure_idle_slot("reset")
        self.current_result = None
        self.current_image_url = None
        self.error = None
        self._enter(Phase.IDLE)

    def submit_feedback(self, status: FeedbackStatus, issue: Optional[str] = None) -> AnalysisHistoryItem:
        return self.dispatch(FeedbackEvent(status=status, issue=issue))

    def dispatch(self, event: FeedbackEvent) -> AnalysisHistoryItem:
        """Apply a feedback event to the history item currently on display."""
        current_id = getattr(self.current_result, "id", None)
        if current_id is None:
            raise HistoryItemNotFound("no analysis on display")
        item = self.find_item(current_id)
        if item.feedback is not None and item.feedback.given:
            raise FeedbackAlreadySubmitted(current_id)
        item.feedback = event.to_feedback()
        logger.info("Feedback on %s: %s %s", item.id, item.feedback.status.value, item.feedback.issue or "")
        return item

    def close(self):
        """Tear down; late completions of in-flight work are dropped."""
        self.closed = True


class SessionRegistry:
    """In-memory client_id -> AnalysisSession map, least recently used evicted first."""

    def __init__(self, analyzer, max_sessions: int = config.MAX_SESSIONS, history_limit: int = config.HISTORY_LIMIT):
        self.analyzer = analyzer
        self.max_sessions = max_sessions
        self.history_limit = history_limit
        self._sessions: "OrderedDict[str, AnalysisSession]" = OrderedDict()

    def __len__(self):
        return len(self._sessions)

    def __contains__(self, client_id):
        return client_id in self._sessions

    def get(self, client_id: str) -> AnalysisSession:
        session = self._sessions.get(client_id)
        if session is None:
            session = AnalysisSession(self.analyzer, history_limit=self.history_limit)
            self._sessions[client_id] = session
            while len(self._sessions) > self.max_sessions:
                old_id, old = self._sessions.popitem(last=False)
                logger.info("Evicting session %s", old_id)
                old.close()
        else:
            self._sessions.move_to_end(client_id)
        return session

    def discard(self, client_id: str) -> bool:
        session = self._sessions.pop(client_id, None)
        if session is None:
            return False
        session.close()
        return True
