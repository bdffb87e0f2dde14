import unittest

from ooo_core import DEFAULT_TRACE, Pipeline, TraceParseError, TraceRecord, parse_trace, simulate


class TestParseTrace(unittest.TestCase):
    def test_default_trace(self):
        recs = parse_trace(DEFAULT_TRACE)
        self.assertEqual(len(recs), 8)
        self.assertEqual(recs[0], TraceRecord(0x2B6420, 0, 1, 2, 3))
        self.assertEqual(recs[1], TraceRecord(0x2B6424, 2, 4, 1, -1))

    def test_default_trace_runs(self):
        sim = simulate(parse_trace(DEFAULT_TRACE), 16, 8, 4)
        self.assertEqual(sim.retired_count, 8)
        self.assertTrue(sim.done())

    def test_wrong_field_count(self):
        with self.assertRaises(TraceParseError) as cm:
            parse_trace("ab 0 1 2 3\nac 0 1 2\n")
        self.assertEqual(cm.exception.lineno, 2)
        self.assertEqual(cm.exception.line, "ac 0 1 2")

    def test_non_numeric_field(self):
        with self.assertRaises(TraceParseError) as cm:
            parse_trace("2b6420 add 1 2 3")
        self.assertEqual(cm.exception.lineno, 1)
        self.assertEqual(cm.exception.reason, "non-numeric field")

    def test_bad_pc(self):
        with self.assertRaises(TraceParseError):
            parse_trace("zz 0 1 2 3")

    def test_invalid_register(self):
        with self.assertRaises(TraceParseError):
            parse_trace("10 0 -2 1 1")

    def test_comments_and_blanks_keep_line_numbers(self):
        with self.assertRaises(TraceParseError) as cm:
            parse_trace("\n# header\n2b 0 1 2\n")
        self.assertEqual(cm.exception.lineno, 3)

    def test_parse_error_is_value_error(self):
        with self.assertRaises(ValueError):
            parse_trace("1 2 3")


class TestLoadTrace(unittest.TestCase):
    def test_plain_tuples(self):
        sim = simulate([(0x10, 0, 1, -1, -1), (0x14, 2, 2, 1, -1)], 4, 4, 1)
        self.assertEqual(sim.retired_count, 2)

    def test_register_out_of_range(self):
        sim = Pipeline(4, 4, 1, num_regs=8)
        with self.assertRaises(TraceParseError) as cm:
            sim.load_trace([(0x10, 0, 1, -1, -1), (0x14, 0, 8, -1, -1)])
        self.assertEqual(cm.exception.lineno, 2)

    def test_short_record(self):
        sim = Pipeline(4, 4, 1)
        with self.assertRaises(TraceParseError):
            sim.load_trace([(0x10, 0, 1)])

    def test_string_field(self):
        sim = Pipeline(4, 4, 1)
        with self.assertRaises(TraceParseError) as cm:
            sim.load_trace([(0x10, 0, "r1", -1, -1)])
        self.assertEqual(cm.exception.lineno, 1)
        self.assertEqual(cm.exception.reason, "non-numeric field")

    def test_float_field(self):
        sim = Pipeline(4, 4, 1)
        with self.assertRaises(TraceParseError) as cm:
            sim.load_trace([(0x10, 0, 1, -1, -1), (0x14, 0, 1.5, -1, -1)])
        self.assertEqual(cm.exception.lineno, 2)
        self.assertEqual(cm.exception.reason, "non-numeric field")

    def test_non_numeric_pc_and_opcode(self):
        sim = Pipeline(4, 4, 1)
        for rec in (("10", 0, 1, -1, -1), (0x10, None, 1, -1, -1), (0x10, True, 1, -1, -1)):
            with self.assertRaises(TraceParseError):
                sim.load_trace([rec])

    def test_failed_load_queues_nothing(self):
        sim = Pipeline(4, 4, 1, num_regs=8)
        with self.assertRaises(TraceParseError):
            sim.load_trace([(0x10, 0, 1, -1, -1), (0x14, 0, 99, -1, -1)])
        self.assertEqual(len(sim.trace), 0)

        sim.load_trace([(0x10, 0, 1, -1, -1)])
        with self.assertRaises(TraceParseError):
            sim.load_trace([(0x14, 0, 2, -1, -1), (0x18, 0, "x", -1, -1)])
        self.assertEqual(len(sim.trace), 1)
        self.assertEqual(sim.run().retired_count, 1)


if __name__ == "__main__":
    unittest.main()
