import unittest
import sys
import os
import io
import json
import tempfile
from contextlib import redirect_stdout

# Adjust path to import framework_surface
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from framework_surface.src.framework_surface.callgraph import ClassHierarchyCallGraphProvider
from framework_surface.src.framework_surface.indexer import JavaIndexer
from framework_surface.src.framework_surface.models.analysis_models import PathTrace
from framework_surface.src.framework_surface.models.program_models import JavaMethod
from framework_surface.src.framework_surface.outputs.output import (
    CollectingTraceSink,
    ConsoleTraceSink,
    FileTraceSink,
    MultiTraceSink,
    dump_call_graph_plain,
    print_summary,
    to_json,
)

ENTRY = JavaMethod("p.Svc", "getValue", ("java.lang.String",), "int", has_body=True)
HELPER = JavaMethod("p.Svc", "helper", ("java.lang.String",), "int", has_body=True)

SOURCE = """
package p;
public class Svc {
    public int getValue(String key) { return helper(key) + Util.twice(1); }
    private int helper(String key) { return key.length(); }
}
"""

LIBRARY = """
package p;
public class Util { public static int twice(int x) { return x * 2; } }
"""


def trace(*steps, terminus=ENTRY):
    return PathTrace(ENTRY, terminus, tuple(steps))


class TestTraceSinks(unittest.TestCase):
    def test_console_sink_shortens_long_traces(self):
        out = io.StringIO()
        with redirect_stdout(out):
            ConsoleTraceSink().emit(trace("a", "b"))
            ConsoleTraceSink(limit=2).emit(trace("a", "b", "c", "d"))
        lines = out.getvalue().splitlines()
        self.assertEqual(lines, [
            "--- Core Path Found for getValue ---",
            "['a', 'b']",
            "--- Core Path Found for getValue ---",
            "a",
            "... (2 steps) ...",
            "d",
        ])

    def test_file_sink_writes_full_traces(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "core_paths.txt")
            with FileTraceSink(path) as sink:
                sink.emit(trace("return helper(key);", "return key.length();", terminus=HELPER))
                sink.emit(trace("return helper(key);"))
            with open(path, encoding="utf-8") as f:
                text = f.read()

        self.assertEqual(text, (
            "=== Core Path for <p.Svc: int getValue(java.lang.String)> ===\n"
            "  # ends in <p.Svc: int helper(java.lang.String)>\n"
            "  return helper(key);\n"
            "  return key.length();\n"
            "\n"
            "=== Core Path for <p.Svc: int getValue(java.lang.String)> ===\n"
            "  # ends in <p.Svc: int getValue(java.lang.String)>\n"
            "  return helper(key);\n"
            "\n"
        ))

    def test_file_sink_raises_when_unwritable(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(OSError):
                FileTraceSink(os.path.join(tmp, "missing", "core_paths.txt"))

    def test_multi_sink_fans_out(self):
        first, second = CollectingTraceSink(), CollectingTraceSink()
        sink = MultiTraceSink(first, second)
        sink.emit(trace("x"))
        sink.close()
        self.assertEqual(len(first.traces), 1)
        self.assertEqual(first.traces, second.traces)

    def test_collecting_sink_filters_by_terminus(self):
        sink = CollectingTraceSink()
        sink.emit(trace("a", terminus=HELPER))
        sink.emit(trace("a", "b"))
        self.assertEqual(len(sink.ending_in(HELPER.signature)), 1)
        self.assertEqual(len(sink.ending_in(ENTRY.signature)), 1)


class TestIndexReports(unittest.TestCase):
    def setUp(self):
        indexer = JavaIndexer()
        indexer.index_source(SOURCE, "Svc.java")
        indexer.index_source(LIBRARY, "Util.java", application=False)
        self.program = indexer.build_program()

    def test_to_json_lists_application_types(self):
        data = json.loads(to_json(self.program))
        self.assertEqual(data["packages"], ["p"])
        self.assertEqual([c["fqcn"] for c in data["classes"]], ["p.Svc"])
        methods = {m["name"]: m for m in data["classes"][0]["methods"]}
        self.assertEqual(methods["getValue"]["params"], ["java.lang.String"])
        self.assertEqual([c["name"] for c in methods["getValue"]["calls"]], ["helper", "twice"])

    def test_print_summary(self):
        out = io.StringIO()
        with redirect_stdout(out):
            print_summary(self.program)
        text = out.getvalue()
        self.assertIn("[p.Svc] class", text)
        self.assertIn("int getValue(java.lang.String)", text)
        self.assertIn("calls: <p.Util: int twice(int)>  @ 4\n", text)
        self.assertNotIn("[p.Util]", text)

    def test_plain_call_graph_keeps_application_edges(self):
        entry = self.program.method("<p.Svc: int getValue(java.lang.String)>")
        graph = ClassHierarchyCallGraphProvider(self.program).build([entry])
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "callgraph.txt")
            self.assertTrue(dump_call_graph_plain(graph, self.program, path))
            with open(path, encoding="utf-8") as f:
                text = f.read()

        self.assertEqual(text, (
            "CALLER: <p.Svc: int getValue(java.lang.String)>\n"
            "    -> <p.Svc: int helper(java.lang.String)>\n"
            "\n"
        ))

    def test_plain_call_graph_reports_unwritable_file(self):
        entry = self.program.method("<p.Svc: int getValue(java.lang.String)>")
        graph = ClassHierarchyCallGraphProvider(self.program).build([entry])
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertLogs("framework_surface.src.framework_surface.outputs.output", level="ERROR"):
                ok = dump_call_graph_plain(graph, self.program, os.path.join(tmp, "no", "cg.txt"))
        self.assertFalse(ok)


if __name__ == '__main__':
    unittest.main()
