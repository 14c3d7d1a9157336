"""Orchestrate texture loads and packing runs.

`TexturePacker` owns the application state: one lifecycle per input slot
plus a single run lifecycle. Loads and runs execute on background worker
threads and report back through a result queue that the controlling
context drains with `poll()`; nothing ever blocks waiting on a worker
except the explicit `wait()` helper used by headless callers.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from queue import Empty, Queue
from typing import Dict, List, Optional, Union

import numpy as np

from .config import (
    InputSlot, NormalEncoding, OutputFormat, PackerConfig, RoughnessEncoding,
)
from .core import RunNotReadyError, SourceImage, TexturePackerError
from .phases.composite import ChannelCompositor
from .phases.container import ContainerWriter

logger = logging.getLogger("terrain_packer.pipeline")


class SlotStatus(Enum):
    """Lifecycle of one input slot."""

    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class RunStatus(Enum):
    """Lifecycle of the packing run."""

    NOT_STARTED = "not_started"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


# Optional maps packed into each required map's output.
_CONTRIBUTORS = {
    InputSlot.ALBEDO: (InputSlot.AMBIENT_OCCLUSION, InputSlot.HEIGHT),
    InputSlot.NORMAL: (InputSlot.ROUGHNESS,),
}


@dataclass
class SlotState:
    """Current state of one input slot."""

    status: SlotStatus = SlotStatus.NOT_LOADED
    path: Optional[str] = None
    image: Optional[SourceImage] = None
    error: Optional[str] = None
    # Bumped on every load/clear; results tagged with an older value are stale.
    generation: int = 0


@dataclass
class RunState:
    """Current state of the packing run."""

    status: RunStatus = RunStatus.NOT_STARTED
    error: Optional[str] = None
    outputs: List[str] = field(default_factory=list)
    run_id: int = 0


@dataclass
class PackerState:
    """Everything the packer knows between operations."""

    normal_encoding: NormalEncoding = NormalEncoding.OPENGL
    roughness_encoding: RoughnessEncoding = RoughnessEncoding.ROUGHNESS
    output_format: OutputFormat = OutputFormat.PNG
    output_dir: Optional[str] = None
    slots: Dict[InputSlot, SlotState] = field(
        default_factory=lambda: {slot: SlotState() for slot in InputSlot}
    )
    run: RunState = field(default_factory=RunState)


@dataclass(frozen=True)
class SlotLoaded:
    """Result of one background load."""

    slot: InputSlot
    generation: int
    image: Optional[SourceImage] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RunFinished:
    """Result of one background packing run."""

    run_id: int
    outputs: tuple = ()
    error: Optional[str] = None


class TexturePacker:
    """Load source maps and pack them into albedo and normal textures.

    Typical headless use::

        with TexturePacker(config) as packer:
            packer.load(InputSlot.ALBEDO, "rock_albedo.png")
            packer.load(InputSlot.NORMAL, "rock_normal.png")
            packer.set_output_dir("out")
            packer.wait()
            packer.run()
            packer.wait()
    """

    def __init__(self, config: Optional[PackerConfig] = None):
        """Initialize state from config and start the worker pools."""
        self.config = config or PackerConfig()
        self.state = PackerState(
            normal_encoding=self.config.normal_encoding,
            roughness_encoding=self.config.roughness_encoding,
            output_format=self.config.output_format,
            output_dir=self.config.output.directory or None,
        )
        self._events: Queue = Queue()
        self._load_executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="texture-load",
        )
        self._run_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="texture-pack",
        )
        self._compositor = ChannelCompositor(self.config)
        self._writer = ContainerWriter(self.config)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release worker threads."""
        self._load_executor.shutdown(wait=wait)
        self._run_executor.shutdown(wait=wait)

    # ──────────────────────────────────────────
    # Slots
    # ──────────────────────────────────────────

    def slot(self, slot: InputSlot) -> SlotState:
        return self.state.slots[slot]

    def image(self, slot: InputSlot) -> Optional[SourceImage]:
        return self.state.slots[slot].image

    def load(self, slot: InputSlot, path: str) -> int:
        """Start loading ``path`` into ``slot``; returns the load generation.

        The slot switches to LOADING immediately and drops any previous
        image. A load already in flight for the slot is superseded.
        """
        state = self.state.slots[slot]
        generation = state.generation + 1
        # Raises RuntimeError after shutdown(); the slot is left untouched.
        self._load_executor.submit(self._load_task, slot, generation, path)
        state.generation = generation
        state.status = SlotStatus.LOADING
        state.path = path
        state.image = None
        state.error = None
        logger.info("Loading %s map: %s", slot.label, path)
        return generation

    def clear(self, slot: InputSlot) -> None:
        """Discard the slot's image and return it to NOT_LOADED."""
        state = self.state.slots[slot]
        state.generation += 1
        state.status = SlotStatus.NOT_LOADED
        state.path = None
        state.image = None
        state.error = None
        logger.debug("Cleared %s slot", slot.label)

    def _load_task(self, slot: InputSlot, generation: int, path: str) -> None:
        try:
            image = SourceImage.load(path, max_pixels=self.config.max_image_pixels)
            event = SlotLoaded(slot, generation, image=image)
        except TexturePackerError as exc:
            event = SlotLoaded(slot, generation, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure loading %s", path)
            event = SlotLoaded(slot, generation, error=str(exc) or type(exc).__name__)
        self._events.put(event)

    def _apply_load(self, event: SlotLoaded) -> bool:
        state = self.state.slots[event.slot]
        if event.generation != state.generation:
            logger.debug(
                "Discarding stale %s load (generation %d, current %d)",
                event.slot.label, event.generation, state.generation,
            )
            return False
        if event.error is not None:
            state.status = SlotStatus.ERROR
            state.error = event.error
            state.image = None
            logger.warning("Failed to load %s map %s: %s", event.slot.label, state.path, event.error)
            return True
        state.status = SlotStatus.LOADED
        state.image = event.image
        state.error = None
        logger.info(
            "Loaded %s map %s (%dx%d)",
            event.slot.label, state.path, event.image.width, event.image.height,
        )
        self._check_dimensions(event.slot)
        return True

    def _check_dimensions(self, slot: InputSlot) -> None:
        """Reject contributors whose size differs from their primary map."""
        if slot.required:
            pairs = [(slot, contributor) for contributor in _CONTRIBUTORS[slot]]
        else:
            pairs = [(slot.primary, slot)]
        for primary, contributor in pairs:
            primary_image = self.state.slots[primary].image
            contributor_image = self.state.slots[contributor].image
            if primary_image is None or contributor_image is None:
                continue
            if primary_image.size == contributor_image.size:
                continue
            message = (
                f"Dimension mismatch: {contributor.label} is "
                f"{contributor_image.width}x{contributor_image.height} but "
                f"{primary.label} is {primary_image.width}x{primary_image.height}"
            )
            state = self.state.slots[contributor]
            state.status = SlotStatus.ERROR
            state.image = None
            state.error = message
            logger.warning(message)

    # ──────────────────────────────────────────
    # Settings
    # ──────────────────────────────────────────

    def set_config(
        self,
        normal_encoding: Union[NormalEncoding, str, None] = None,
        roughness_encoding: Union[RoughnessEncoding, str, None] = None,
        output_format: Union[OutputFormat, str, None] = None,
    ) -> None:
        """Update per-run packing conventions; None leaves a value unchanged."""
        if normal_encoding is not None:
            self.state.normal_encoding = NormalEncoding(normal_encoding)
        if roughness_encoding is not None:
            self.state.roughness_encoding = RoughnessEncoding(roughness_encoding)
        if output_format is not None:
            self.state.output_format = OutputFormat(output_format)

    def set_output_dir(self, path: Optional[str]) -> None:
        self.state.output_dir = path or None

    # ──────────────────────────────────────────
    # Run
    # ──────────────────────────────────────────

    def run_blockers(self) -> List[str]:
        """Return the reasons a run cannot start right now (empty when ready)."""
        reasons = []
        for slot in (InputSlot.ALBEDO, InputSlot.NORMAL):
            if self.state.slots[slot].status is not SlotStatus.LOADED:
                reasons.append(f"{slot.label} map is not loaded")
        if not self.state.output_dir:
            reasons.append("Output directory is not set")
        if self.state.run.status is RunStatus.PROCESSING:
            reasons.append("A run is already processing")
        return reasons

    def can_run(self) -> bool:
        return not self.run_blockers()

    def run(self, output_dir: Optional[str] = None) -> int:
        """Start a packing run on the background worker; returns its id.

        ``output_dir`` replaces the current output directory when given.
        Raises RunNotReadyError when required maps are missing, no output
        directory is set, or a run is already processing.
        """
        if output_dir is not None:
            self.set_output_dir(output_dir)
        blockers = self.run_blockers()
        if blockers:
            raise RunNotReadyError("; ".join(blockers))

        def _original(slot: InputSlot) -> Optional[np.ndarray]:
            state = self.state.slots[slot]
            if state.status is SlotStatus.LOADED and state.image is not None:
                return state.image.original
            return None

        run_id = self.state.run.run_id + 1
        job = dict(
            albedo=_original(InputSlot.ALBEDO),
            normal=_original(InputSlot.NORMAL),
            ao=_original(InputSlot.AMBIENT_OCCLUSION),
            height=_original(InputSlot.HEIGHT),
            roughness=_original(InputSlot.ROUGHNESS),
            normal_encoding=self.state.normal_encoding,
            roughness_encoding=self.state.roughness_encoding,
        )
        # Raises RuntimeError after shutdown(); the previous run state is kept.
        self._run_executor.submit(
            self._run_task, run_id, job, self.state.output_format, self.state.output_dir,
        )
        self.state.run = RunState(status=RunStatus.PROCESSING, run_id=run_id)
        logger.info(
            "Starting run %d: format=%s normal=%s roughness=%s -> %s",
            run_id, self.state.output_format.value, self.state.normal_encoding.value,
            self.state.roughness_encoding.value, self.state.output_dir,
        )
        return run_id

    def _run_task(self, run_id: int, job: dict, output_format: OutputFormat,
                  output_dir: str) -> None:
        start = time.monotonic()
        try:
            result = self._compositor.process(**job)
            outputs = self._writer.write_composite(result, output_dir, output_format)
            event = RunFinished(run_id, outputs=tuple(outputs))
            logger.info("Run %d finished in %.2fs", run_id, time.monotonic() - start)
        except TexturePackerError as exc:
            event = RunFinished(run_id, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure in run %d", run_id)
            event = RunFinished(run_id, error=str(exc) or type(exc).__name__)
        self._events.put(event)

    def _apply_run(self, event: RunFinished) -> bool:
        run = self.state.run
        if event.run_id != run.run_id:
            logger.debug("Discarding result of superseded run %d", event.run_id)
            return False
        if event.error is not None:
            run.status = RunStatus.ERROR
            run.error = event.error
            logger.error("Run %d failed: %s", event.run_id, event.error)
        else:
            run.status = RunStatus.DONE
            run.outputs = list(event.outputs)
        return True

    # ──────────────────────────────────────────
    # Event loop
    # ──────────────────────────────────────────

    def poll(self) -> list:
        """Apply every finished load/run without blocking; return applied events."""
        applied = []
        while True:
            try:
                event = self._events.get_nowait()
            except Empty:
                break
            if isinstance(event, SlotLoaded):
                ok = self._apply_load(event)
            else:
                ok = self._apply_run(event)
            if ok:
                applied.append(event)
        return applied

    @property
    def busy(self) -> bool:
        """True while any load or the run is still pending."""
        if self.state.run.status is RunStatus.PROCESSING:
            return True
        return any(s.status is SlotStatus.LOADING for s in self.state.slots.values())

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Poll at a fixed tick until nothing is pending; False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.poll()
            if not self.busy:
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(self.config.poll_interval_seconds)
