# app.py
# -------------------------------------------------------------
# Out-of-order superscalar pipeline simulator
# Streamlit interface over ooo_core
# -------------------------------------------------------------
# - Trace: one instruction per line (pc, opcode, dst, src1, src2)
# - ROB, issue queue, rename table and latches per cycle
# - Step, run N cycles, run until the pipeline drains
# - Metrics: cycles, retired, IPC and per-instruction timing
# -------------------------------------------------------------

from __future__ import annotations
import streamlit as st

from ooo_core import (
    DEFAULT_LATENCIES,
    DEFAULT_SIZES,
    DEFAULT_TRACE,
    Pipeline,
    SimError,
    parse_trace,
)

st.set_page_config(page_title="Out-of-order pipeline simulator", layout="wide")

st.title("Out-of-order superscalar pipeline")

with st.sidebar:
    st.header("Configuration")
    rob_sz = st.number_input("ROB size", 1, 512, DEFAULT_SIZES["ROB"])
    iq_sz = st.number_input("IQ size", 1, 256, DEFAULT_SIZES["IQ"])
    width = st.number_input("Width", 1, 16, DEFAULT_SIZES["WIDTH"])

    st.markdown("---")
    st.subheader("Latencies (by opcode)")
    lat = {}
    for op, default in DEFAULT_LATENCIES.items():
        lat[op] = int(st.number_input(f"Opcode {op}", 1, 100, default))

    st.markdown("---")
    runN = st.number_input("Run N cycles", 1, 1000, 10)

trace_text = st.text_area("Trace (pc opcode dst src1 src2)", value=DEFAULT_TRACE, height=240)

if "sim" not in st.session_state or st.button("Load & reset", type="primary"):
    try:
        sim = Pipeline(int(rob_sz), int(iq_sz), int(width), latencies=lat)
        sim.load_trace(parse_trace(trace_text))
    except SimError as e:
        st.error(f"Cannot load trace: {e}")
        st.stop()
    st.session_state.sim = sim

sim: Pipeline = st.session_state.sim

c1, c2, c3, _ = st.columns([1, 1, 1, 2])
if c1.button("Step (1 cycle)") and not sim.done():
    sim.step()
if c2.button(f"Run {runN} cycles"):
    for _ in range(int(runN)):
        if sim.done():
            break
        sim.step()
if c3.button("Run to end", type="secondary"):
    safety = 100000
    while not sim.done() and safety > 0:
        sim.step()
        safety -= 1
    if not sim.done():
        st.warning("Pipeline did not drain (structural deadlock?)")

st.subheader(f"Cycle {sim.cycle}")
st.write(sim.metrics())

st.markdown("---")

colA, colB = st.columns(2)
with colA:
    st.markdown("### ROB")
    rob_rows = [
        {
            "slot": v.slot,
            "instr": f"I{v.owner}",
            "dst": f"R{v.dst}" if v.dst >= 0 else "-",
            "pc": f"{v.pc:x}",
            "ready": v.ready,
            "waiting": ", ".join(f"I{s}.src{o}" for s, o in v.waiting),
            "pos": "head" if v.is_head else ("tail" if v.is_tail else ""),
        }
        for v in sim.rob_snapshot()
    ]
    st.dataframe(rob_rows, use_container_width=True)

    st.markdown("### Issue queue")
    st.dataframe(
        [
            {
                "instr": f"I{v.seq}",
                "dst": f"R{v.dst}" if v.dst >= 0 else "-",
                "src1 ready": v.src1_ready,
                "src2 ready": v.src2_ready,
                "issuable": v.valid and v.src1_ready and v.src2_ready,
            }
            for v in sim.iq_snapshot()
        ],
        use_container_width=True,
    )

with colB:
    st.markdown("### Rename table (reg -> ROB slot)")
    rmt = {f"R{r}": slot for r, slot in enumerate(sim.rmt_snapshot()) if slot is not None}
    st.dataframe([rmt], use_container_width=True)

    st.markdown("### Latches")
    st.dataframe(
        [
            {"stage": name, "bundle": " ".join(f"I{i.seq}" for i in bundle)}
            for name, bundle in sim.latch_snapshot().items()
        ],
        use_container_width=True,
    )

st.markdown("### Retired instructions")
st.code("\n".join(str(t) for t in sim.timings()) or "(none)")

st.markdown("### Cycle log")
if sim.events:
    for e in sim.events:
        st.write("• ", e)
else:
    st.write("(no events)")
