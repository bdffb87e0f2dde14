# ooo_core.py
# -------------------------------------------------------------
# Core of the out-of-order superscalar pipeline simulator
# (no GUI)
# -------------------------------------------------------------

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Any

# ==========================
# Default parameters
# ==========================
NO_REG = -1
BASE_LATENCY = 1

# opcode -> execution latency (opcodes missing here use BASE_LATENCY)
DEFAULT_LATENCIES = {
    0: 1,
    1: 1,
    2: 3,
    3: 5,
}

DEFAULT_SIZES = {
    "ROB": 16,
    "IQ": 8,
    "WIDTH": 4,
}

NUM_REGS = 67  # r0..r66

STAGES = ("FE", "DE", "RN", "RR", "DI", "IS", "EX", "WB", "RT")


# ==========================
# Errors
# ==========================
class SimError(Exception):
    pass


class ConfigError(SimError, ValueError):
    pass


class TraceParseError(SimError, ValueError):
    def __init__(self, lineno: int, line: str, reason: str):
        super().__init__(f"line {lineno}: {reason}: {line!r}")
        self.lineno = lineno
        self.line = line
        self.reason = reason


class PipelineInvariantError(SimError, RuntimeError):
    """Internal state would be corrupted; never raised for a valid run."""


# ==========================
# Data classes
# ==========================
@dataclass(frozen=True)
class TraceRecord:
    pc: int
    opcode: int
    dst: int = NO_REG
    src1: int = NO_REG
    src2: int = NO_REG


@dataclass
class Instruction:
    pc: int
    opcode: int
    dst: int
    src1: int
    src2: int
    seq: int  # program order
    latency: int = BASE_LATENCY
    exec_timer: int = 0

    # renamed operands: producer ROB slot, None once resolved
    r_src1: Optional[int] = None
    r_src2: Optional[int] = None
    r_dst: Optional[int] = None

    timing: Dict[str, List[int]] = field(
        default_factory=lambda: {s: [0, 0] for s in STAGES}
    )

    def begin(self, stage: str, cycle: int):
        self.timing[stage][0] = cycle

    def end(self, stage: str, cycle: int):
        self.timing[stage][1] = cycle

    def timing_record(self) -> "TimingRecord":
        return TimingRecord(
            seq=self.seq,
            opcode=self.opcode,
            dst=self.dst,
            src1=self.src1,
            src2=self.src2,
            stages=tuple((b, e) for b, e in (self.timing[s] for s in STAGES)),
        )

    def __str__(self):
        return f"I{self.seq} op{self.opcode} r{self.dst} <- r{self.src1}, r{self.src2}"


@dataclass(frozen=True)
class TimingRecord:
    """Begin/end cycle of each of the nine stages, in pipeline order."""

    seq: int
    opcode: int
    dst: int
    src1: int
    src2: int
    stages: Tuple[Tuple[int, int], ...]

    def stage(self, name: str) -> Tuple[int, int]:
        return self.stages[STAGES.index(name)]

    def __str__(self):
        parts = [f"{self.seq} fu{{{self.opcode}}} src{{{self.src1},{self.src2}}} dst{{{self.dst}}}"]
        for name, (b, e) in zip(STAGES, self.stages):
            parts.append(f"{name}{{{b},{e - b}}}")
        return " ".join(parts)


@dataclass
class ROBEntry:
    slot: int
    dst: int = NO_REG
    pc: int = 0
    ready: bool = False
    completed: bool = False
    owner: Optional[int] = None  # seq of the owning instruction
    waiting: List[Tuple[int, int]] = field(default_factory=list)  # (consumer seq, operand)

    def reset(self, owner: int, dst: int, pc: int):
        self.owner = owner
        self.dst = dst
        self.pc = pc
        self.ready = False
        self.completed = False
        self.waiting = []


@dataclass
class IQEntry:
    instr: Instruction
    src1_ready: bool = True
    src2_ready: bool = True
    valid: bool = True

    def can_issue(self) -> bool:
        return self.valid and self.src1_ready and self.src2_ready


# Read-only views handed to reporting/visualization code
@dataclass(frozen=True)
class ROBSlotView:
    slot: int
    owner: Optional[int]
    dst: int
    pc: int
    ready: bool
    waiting: Tuple[Tuple[int, int], ...]
    is_head: bool
    is_tail: bool


@dataclass(frozen=True)
class IQEntryView:
    seq: int
    dst: int
    src1_ready: bool
    src2_ready: bool
    valid: bool


@dataclass(frozen=True)
class InstructionView:
    seq: int
    pc: int
    opcode: int
    dst: int
    src1: int
    src2: int


def _view(instr: Instruction) -> InstructionView:
    return InstructionView(instr.seq, instr.pc, instr.opcode, instr.dst, instr.src1, instr.src2)


# ==========================
# Reorder buffer
# ==========================
class ReorderBuffer:
    """Circular arena of slots; head is the oldest, tail the next to allocate."""

    def __init__(self, size: int):
        self.size = size
        self.entries: List[ROBEntry] = [ROBEntry(slot=i) for i in range(size)]
        self.head = 0
        self.tail = 0
        self.is_full = False

    def full(self) -> bool:
        return self.is_full

    def empty(self) -> bool:
        return self.head == self.tail and not self.is_full

    def used(self) -> int:
        if self.is_full:
            return self.size
        return (self.tail - self.head) % self.size

    def empty_size(self) -> int:
        return self.size - self.used()

    def allocate(self) -> Optional[int]:
        if self.is_full:
            return None
        slot = self.tail
        self.tail = (self.tail + 1) % self.size
        if self.tail == self.head:
            self.is_full = True
        return slot

    def peek_head(self) -> Optional[ROBEntry]:
        if self.empty():
            return None
        return self.entries[self.head]

    def pop_head(self) -> ROBEntry:
        if self.empty():
            raise PipelineInvariantError("pop from empty ROB")
        e = self.entries[self.head]
        self.head = (self.head + 1) % self.size
        self.is_full = False
        return e

    def live_slots(self) -> List[int]:
        return [(self.head + i) % self.size for i in range(self.used())]


# ==========================
# Rename map table
# ==========================
class RenameTable:
    def __init__(self, size: int = NUM_REGS):
        self.size = size
        self.table: List[Optional[int]] = [None] * size

    def lookup(self, reg: int) -> Optional[int]:
        if reg == NO_REG:
            return None
        return self.table[reg]

    def bind(self, reg: int, slot: int):
        self.table[reg] = slot

    def release(self, reg: int, slot: int):
        # only if no younger producer has rebound the register
        if reg != NO_REG and self.table[reg] == slot:
            self.table[reg] = None


# ==========================
# Issue queue
# ==========================
class IssueQueue:
    def __init__(self, size: int, width: int):
        self.size = size
        self.width = width
        self.entries: List[IQEntry] = []
        self._by_seq: Dict[int, IQEntry] = {}

    def free_size(self) -> int:
        return self.size - len(self.entries)

    def insert_bundle(self, bundle: Sequence[Instruction]):
        for instr in bundle:
            if instr.seq in self._by_seq:
                raise PipelineInvariantError(f"I{instr.seq} already in IQ")
            e = IQEntry(instr, src1_ready=instr.r_src1 is None, src2_ready=instr.r_src2 is None)
            self.entries.append(e)
            self._by_seq[instr.seq] = e

    def wakeup(self, seq: int, operand: int):
        e = self._by_seq.get(seq)
        if e is None:
            return  # consumer not dispatched yet
        if operand == 1:
            e.src1_ready = True
        else:
            e.src2_ready = True

    def issue(self) -> List[Instruction]:
        """Oldest-first: the first `width` ready entries by program order."""
        self.entries.sort(key=lambda e: e.instr.seq)
        picked: List[IQEntry] = []
        for e in self.entries:
            if len(picked) == self.width:
                break
            if e.can_issue():
                picked.append(e)

        for e in picked:
            e.valid = False
            del self._by_seq[e.instr.seq]
        self.entries = [e for e in self.entries if e.valid]
        return [e.instr for e in picked]


# ==========================
# Pipeline latch
# ==========================
class Latch:
    def __init__(self, name: str):
        self.name = name
        self.bundle: List[Instruction] = []

    def occupied(self) -> bool:
        return bool(self.bundle)

    def push(self, bundle: List[Instruction]):
        if self.bundle:
            raise PipelineInvariantError(f"latch {self.name} already holds a bundle")
        self.bundle = bundle

    def take(self) -> List[Instruction]:
        b, self.bundle = self.bundle, []
        return b


# ==========================
# Simulator core
# ==========================
class Pipeline:
    def __init__(
        self,
        rob_size: int,
        iq_size: int,
        width: int,
        latencies: Optional[Dict[int, int]] = None,
        num_regs: int = NUM_REGS,
    ):
        for name, val in (("rob_size", rob_size), ("iq_size", iq_size), ("width", width), ("num_regs", num_regs)):
            if not isinstance(val, int) or isinstance(val, bool) or val <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {val!r}")
        self.lat = dict(DEFAULT_LATENCIES if latencies is None else latencies)
        for op, lat in self.lat.items():
            if not isinstance(lat, int) or isinstance(lat, bool) or lat <= 0:
                raise ConfigError(f"latency for opcode {op} must be a positive integer, got {lat!r}")

        self.width = width
        self.num_regs = num_regs
        self.rob = ReorderBuffer(rob_size)
        self.iq = IssueQueue(iq_size, width)
        self.rmt = RenameTable(num_regs)

        # Latches between in-order stages
        self.fe = Latch("FE")
        self.de = Latch("DE")
        self.rn = Latch("RN")
        self.rr = Latch("RR")
        self.di = Latch("DI")

        self.exec_list: List[Instruction] = []
        self.wb: List[Instruction] = []

        self.trace: Deque[TraceRecord] = deque()
        self.in_flight: Dict[int, Instruction] = {}
        self.retired: List[Instruction] = []

        # Control
        self.cycle = 0
        self.next_seq = 0

        # Cycle log
        self.events: List[str] = []

    # ----------- Trace input -----------
    def load_trace(self, records: Iterable[Any]):
        """Validate every record, then queue them all; a bad record queues nothing."""
        loaded: List[TraceRecord] = []
        for n, rec in enumerate(records, start=1):
            if not isinstance(rec, TraceRecord):
                try:
                    fields = tuple(rec)
                except TypeError:
                    raise TraceParseError(n, repr(rec), "not a record") from None
                if len(fields) != 5:
                    raise TraceParseError(n, repr(rec), f"expected 5 fields, got {len(fields)}")
                rec = TraceRecord(*fields)
            values = (rec.pc, rec.opcode, rec.dst, rec.src1, rec.src2)
            if any(not isinstance(v, int) or isinstance(v, bool) for v in values):
                raise TraceParseError(n, repr(rec), "non-numeric field")
            for reg in (rec.dst, rec.src1, rec.src2):
                if reg != NO_REG and not 0 <= reg < self.num_regs:
                    raise TraceParseError(n, repr(rec), f"register r{reg} outside 0..{self.num_regs - 1}")
            loaded.append(rec)
        self.trace.extend(loaded)

    def latency_of(self, opcode: int) -> int:
        return self.lat.get(opcode, BASE_LATENCY)

    # ----------- Stages (called in reverse pipeline order) -----------
    def retire(self):
        for _ in range(self.width):
            head = self.rob.peek_head()
            if head is None or not head.ready:
                break
            entry = self.rob.pop_head()
            instr = self.in_flight.pop(entry.owner)
            instr.end("RT", self.cycle)
            self.rmt.release(entry.dst, entry.slot)
            entry.owner = None
            self.retired.append(instr)
            self.events.append(f"Retire: {instr} (ROB{entry.slot})")

    def writeback(self):
        for instr in self.wb:
            instr.end("WB", self.cycle)
            instr.begin("RT", self.cycle)
            self.rob.entries[instr.r_dst].ready = True
        self.wb = []

    def execute(self):
        finished: List[Instruction] = []
        still: List[Instruction] = []
        for instr in self.exec_list:
            instr.exec_timer += 1
            if instr.exec_timer == instr.latency:
                finished.append(instr)
            else:
                still.append(instr)
        self.exec_list = still

        for instr in finished:
            instr.end("EX", self.cycle)
            instr.begin("WB", self.cycle)
            self.wb.append(instr)

        for instr in finished:
            self.broadcast(instr.r_dst)
            self.events.append(f"Exec done: {instr} -> ROB{instr.r_dst}")

    def broadcast(self, slot: int):
        entry = self.rob.entries[slot]
        entry.completed = True
        for seq, operand in entry.waiting:
            consumer = self.in_flight[seq]
            if operand == 1:
                consumer.r_src1 = None
            else:
                consumer.r_src2 = None
            self.iq.wakeup(seq, operand)
        entry.waiting = []

    def issue(self):
        for instr in self.iq.issue():
            instr.end("IS", self.cycle)
            instr.begin("EX", self.cycle)
            self.exec_list.append(instr)
            self.events.append(f"Issue: {instr}")

    def dispatch(self):
        if not self.di.occupied():
            return
        if self.iq.free_size() < len(self.di.bundle):
            self.events.append(f"Stall: dispatch, IQ free {self.iq.free_size()}")
            return
        bundle = self.di.take()
        for instr in bundle:
            instr.end("DI", self.cycle)
            instr.begin("IS", self.cycle)
        self.iq.insert_bundle(bundle)

    def reg_read(self):
        if not self.rr.occupied() or self.di.occupied():
            return
        bundle = self.rr.take()
        for instr in bundle:
            instr.end("RR", self.cycle)
            instr.begin("DI", self.cycle)
        self.di.push(bundle)

    def rename(self):
        if not self.rn.occupied() or self.rr.occupied():
            return
        if self.rob.empty_size() < len(self.rn.bundle):
            self.events.append(f"Stall: rename, ROB free {self.rob.empty_size()}")
            return

        bundle = self.rn.take()
        for instr in bundle:
            # sources first, so "r1 <- r1" reads the previous producer
            instr.r_src1 = self._rename_src(instr, instr.src1, 1)
            instr.r_src2 = self._rename_src(instr, instr.src2, 2)

            slot = self.rob.allocate()
            if slot is None:
                raise PipelineInvariantError("ROB allocation failed after capacity check")
            self.rob.entries[slot].reset(owner=instr.seq, dst=instr.dst, pc=instr.pc)
            instr.r_dst = slot
            if instr.dst != NO_REG:
                self.rmt.bind(instr.dst, slot)

            instr.end("RN", self.cycle)
            instr.begin("RR", self.cycle)
            self.events.append(f"Rename: {instr} -> ROB{slot}")
        self.rr.push(bundle)

    def _rename_src(self, instr: Instruction, reg: int, operand: int) -> Optional[int]:
        slot = self.rmt.lookup(reg)
        if slot is None:
            return None
        producer = self.rob.entries[slot]
        if producer.completed:
            return None
        producer.waiting.append((instr.seq, operand))
        return slot

    def decode(self):
        if not self.de.occupied() or self.rn.occupied():
            return
        bundle = self.de.take()
        for instr in bundle:
            instr.end("DE", self.cycle)
            instr.begin("RN", self.cycle)
        self.rn.push(bundle)

    def fetch(self):
        if self.fe.occupied() and not self.de.occupied():
            bundle = self.fe.take()
            for instr in bundle:
                instr.end("FE", self.cycle)
                instr.begin("DE", self.cycle)
            self.de.push(bundle)

        if self.fe.occupied() or not self.trace:
            return
        bundle = []
        while self.trace and len(bundle) < self.width:
            rec = self.trace.popleft()
            instr = Instruction(
                pc=rec.pc,
                opcode=rec.opcode,
                dst=rec.dst,
                src1=rec.src1,
                src2=rec.src2,
                seq=self.next_seq,
                latency=self.latency_of(rec.opcode),
            )
            self.next_seq += 1
            instr.begin("FE", self.cycle)
            self.in_flight[instr.seq] = instr
            bundle.append(instr)
            self.events.append(f"Fetch: {instr}")
        self.fe.push(bundle)

    # ----------- One full cycle -----------
    def step(self):
        self.events = []
        self.retire()
        self.writeback()
        self.execute()
        self.issue()
        self.dispatch()
        self.reg_read()
        self.rename()
        self.decode()
        self.fetch()
        self.cycle += 1

    def done(self) -> bool:
        return (
            not self.trace
            and self.rob.empty()
            and not self.exec_list
            and not self.wb
            and not any(l.occupied() for l in self.latches())
        )

    def run(self) -> "Pipeline":
        while True:
            self.step()
            if self.done():
                return self

    def latches(self) -> Tuple[Latch, ...]:
        return (self.fe, self.de, self.rn, self.rr, self.di)

    # ----------- Metrics -----------
    @property
    def retired_count(self) -> int:
        return len(self.retired)

    @property
    def cycles(self) -> int:
        # numbering starts at the first fetch cycle
        return max(self.cycle - 1, 0)

    @property
    def ipc(self) -> float:
        return self.retired_count / self.cycles if self.cycles > 0 else 0.0

    def metrics(self) -> Dict[str, Any]:
        return {
            "Cycles": self.cycles,
            "Retired": self.retired_count,
            "IPC": round(self.ipc, 2),
            "ROB used": self.rob.used(),
            "IQ used": len(self.iq.entries),
            "In flight": len(self.in_flight),
        }

    # ----------- Snapshots -----------
    def rob_snapshot(self) -> Tuple[ROBSlotView, ...]:
        out = []
        for slot in self.rob.live_slots():
            e = self.rob.entries[slot]
            out.append(ROBSlotView(
                slot=slot,
                owner=e.owner,
                dst=e.dst,
                pc=e.pc,
                ready=e.ready,
                waiting=tuple(e.waiting),
                is_head=slot == self.rob.head,
                is_tail=slot == (self.rob.tail - 1) % self.rob.size,
            ))
        return tuple(out)

    def iq_snapshot(self) -> Tuple[IQEntryView, ...]:
        return tuple(
            IQEntryView(e.instr.seq, e.instr.dst, e.src1_ready, e.src2_ready, e.valid)
            for e in sorted(self.iq.entries, key=lambda e: e.instr.seq)
        )

    def rmt_snapshot(self) -> Tuple[Optional[int], ...]:
        return tuple(self.rmt.table)

    def latch_snapshot(self) -> Dict[str, Tuple[InstructionView, ...]]:
        snap = {l.name: tuple(_view(i) for i in l.bundle) for l in self.latches()}
        snap["EX"] = tuple(_view(i) for i in self.exec_list)
        snap["WB"] = tuple(_view(i) for i in self.wb)
        return snap

    def timings(self) -> Tuple[TimingRecord, ...]:
        return tuple(i.timing_record() for i in self.retired)


def simulate(records: Iterable[Any], rob_size: int, iq_size: int, width: int, **kw) -> Pipeline:
    sim = Pipeline(rob_size, iq_size, width, **kw)
    sim.load_trace(records)
    return sim.run()


# ==========================
# Trace reader
# ==========================
def parse_trace(text: str) -> List[TraceRecord]:
    """One record per line: `<pc hex> <opcode> <dst> <src1> <src2>`."""
    out: List[TraceRecord] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        if len(parts) != 5:
            raise TraceParseError(lineno, line, f"expected 5 fields, got {len(parts)}")
        try:
            pc = int(parts[0], 16)
            opcode, dst, src1, src2 = (int(p, 10) for p in parts[1:])
        except ValueError:
            raise TraceParseError(lineno, line, "non-numeric field") from None
        for reg in (dst, src1, src2):
            if reg < NO_REG:
                raise TraceParseError(lineno, line, f"invalid register id {reg}")
        out.append(TraceRecord(pc, opcode, dst, src1, src2))
    return out


# ==========================
# Sample trace
# ==========================
DEFAULT_TRACE = """
# pc  op dst src1 src2
2b6420 0 1 2 3
2b6424 2 4 1 -1
2b6428 1 5 4 1
2b642c 3 6 2 3
2b6430 0 1 6 5
2b6434 0 7 -1 -1
2b6438 2 8 7 1
2b643c 0 9 8 8
"""
