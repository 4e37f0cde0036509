import threading
import unittest
from unittest import mock

from xctrace_agent.call_tree import build_call_graph
from xctrace_agent.extractors import load_rows
from xctrace_agent.store import CallGraphState, TraceStore
from trace_samples import CPU_TRACE_XML, cpu_row, ms


class TestBuildCallGraph(unittest.TestCase):
    def setUp(self):
        self.graph = build_call_graph(load_rows(CPU_TRACE_XML))

    def test_weights(self):
        self.assertEqual(self.graph.total_weight, 10)
        fetch = self.graph.functions["CoreData.fetch"]
        self.assertEqual(fetch.module, "CoreData")
        self.assertEqual(fetch.self_weight, 0)
        self.assertEqual(fetch.total_weight, 8)
        self.assertEqual(self.graph.functions["main"].total_weight, 10)
        self.assertEqual(self.graph.functions["sqlite3_step"].self_weight, 5)

    def test_edges(self):
        fetch = self.graph.functions["CoreData.fetch"]
        self.assertEqual(list(fetch.callers), ["SyncManager.sync"])
        self.assertEqual(fetch.callers["SyncManager.sync"].weight, 8)
        self.assertEqual(fetch.callers["SyncManager.sync"].module, "MyApp")
        self.assertEqual(fetch.callees["sqlite3_step"].weight, 5)
        self.assertEqual(fetch.callees["NSPredicate.evaluate"].weight, 3)
        self.assertEqual(self.graph.functions["main"].callers, {})

    def test_self_never_exceeds_total(self):
        for node in self.graph.functions.values():
            self.assertGreaterEqual(node.self_weight, 0)
            self.assertLessEqual(node.self_weight, node.total_weight)

    def test_recursion_counts_once_per_sample(self):
        graph = build_call_graph([
            cpu_row([("fib", "App"), ("fib", "App"), ("fib", "App"), ("main", "App")], ms(4))
        ])
        fib = graph.functions["fib"]
        self.assertEqual(graph.total_weight, 4)
        self.assertEqual(fib.total_weight, 4)
        self.assertEqual(fib.self_weight, 4)
        self.assertEqual(fib.callers["fib"].weight, 4)
        self.assertEqual(fib.callers["main"].weight, 4)
        self.assertEqual(fib.callees["fib"].weight, 4)

    def test_unsymbolicated_frames_are_bridged(self):
        graph = build_call_graph([
            cpu_row([("leaf", "App"), ("0x1f2e3d", "???"), ("caller", "App"), ("main", "App")], ms(2))
        ])
        self.assertNotIn("0x1f2e3d", graph.functions)
        self.assertEqual(list(graph.functions["leaf"].callers), ["caller"])
        self.assertEqual(list(graph.functions["caller"].callees), ["leaf"])

    def test_unsymbolicated_leaf_hands_self_time_to_first_symbol(self):
        graph = build_call_graph([
            cpu_row([("<deduplicated_symbol>", "App"), ("work", "App"), ("main", "App")], ms(3))
        ])
        self.assertEqual(graph.functions["work"].self_weight, 3)

    def test_fully_unsymbolicated_samples_still_count_in_total(self):
        graph = build_call_graph([
            cpu_row([("0x1", "?"), ("0x2", "?")], ms(5)),
            cpu_row([("work", "App"), ("main", "App")], ms(5)),
        ])
        self.assertEqual(graph.total_weight, 10)
        self.assertEqual(graph.functions["work"].self_weight, 5)

    def test_rows_without_backtrace_are_skipped(self):
        graph = build_call_graph([
            {"weight": ms(100)},
            {"backtrace": []},
            cpu_row([("work", "App")], ms(1)),
        ])
        self.assertEqual(graph.total_weight, 1)
        self.assertEqual(list(graph.functions), ["work"])

    def test_missing_or_zero_weight_counts_as_one(self):
        graph = build_call_graph([
            cpu_row([("work", "App")]),
            cpu_row([("work", "App")], {"@fmt": "0.00 ms", "#text": "0"}),
        ])
        self.assertEqual(graph.total_weight, 2)
        self.assertEqual(graph.functions["work"].self_weight, 2)

    def test_no_functions_means_no_graph(self):
        self.assertIsNone(build_call_graph([]))
        self.assertIsNone(build_call_graph([cpu_row([("0xdead", "?"), ("unknown", "?")], ms(1))]))


class TestCallGraphCache(unittest.TestCase):
    def setUp(self):
        self.store = TraceStore()

    def test_graph_is_memoized(self):
        trace = self.store.get(self.store.store("/tmp/cpu.trace", "Time Profiler", load_rows(CPU_TRACE_XML)))
        first = self.store.call_graph(trace)
        self.assertIs(self.store.call_graph(trace), first)
        self.assertIs(trace.call_graph_state, CallGraphState.BUILT)

    def test_non_cpu_trace_never_walks_rows(self):
        trace = self.store.get(self.store.store("/tmp/net.trace", "Network", load_rows(CPU_TRACE_XML)))
        with mock.patch("xctrace_agent.store.build_call_graph", wraps=build_call_graph) as builder:
            self.assertIsNone(self.store.call_graph(trace))
            self.assertIsNone(self.store.call_graph(trace))
        builder.assert_not_called()
        self.assertIs(trace.call_graph_state, CallGraphState.ABSENT)

    def test_frameless_cpu_trace_builds_once(self):
        trace = self.store.get(self.store.store("/tmp/cpu.trace", "Time Profiler", [{"weight": ms(1)}]))
        with mock.patch("xctrace_agent.store.build_call_graph", wraps=build_call_graph) as builder:
            self.assertIsNone(self.store.call_graph(trace))
            self.assertIsNone(self.store.call_graph(trace))
        self.assertEqual(builder.call_count, 1)

    def test_absent_marker_ignores_later_rows(self):
        trace = self.store.get(self.store.store("/tmp/cpu.trace", "Time Profiler", []))
        self.assertIsNone(self.store.call_graph(trace))
        trace.raw_table.append(cpu_row([("work", "App")], ms(1)))
        self.assertIsNone(self.store.call_graph(trace))

    def test_concurrent_first_build_runs_once(self):
        trace = self.store.get(self.store.store("/tmp/cpu.trace", "Time Profiler", load_rows(CPU_TRACE_XML)))
        graphs = []
        with mock.patch("xctrace_agent.store.build_call_graph", wraps=build_call_graph) as builder:
            threads = [
                threading.Thread(target=lambda: graphs.append(self.store.call_graph(trace)))
                for _ in range(8)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        self.assertEqual(builder.call_count, 1)
        self.assertEqual(len({id(graph) for graph in graphs}), 1)


if __name__ == "__main__":
    unittest.main()
