import unittest
import sys
import os
import json
import logging
import tempfile

# Adjust path to import framework_surface
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from framework_surface.src.framework_surface.analysis import analyze_program, load_program, run_analysis
from framework_surface.src.framework_surface.config import AnalysisConfig
from framework_surface.src.framework_surface.errors import NoEntryPointsError
from framework_surface.src.framework_surface.main import main
from framework_surface.src.framework_surface.outputs.output import CollectingTraceSink

FILES = {
    "com/android/server/foo/IFoo.java": """
        package com.android.server.foo;
        import android.os.IInterface;
        public interface IFoo extends IInterface {
            int getValue(String key);
        }
    """,
    "com/android/server/foo/Svc.java": """
        package com.android.server.foo;
        public class Svc extends android.os.Binder implements IFoo {
            public int getValue(String key) { return helper(key); }
            private int helper(String key) { return key.length(); }
        }
    """,
    "com/android/server/SystemServer.java": """
        package com.android.server;
        import android.os.ServiceManager;
        import com.android.server.foo.Svc;
        public final class SystemServer {
            private void startOtherServices() {
                ServiceManager.addService("foo", new Svc());
            }
        }
    """,
}

LIBRARY_FILES = {
    "android/os/ServiceManager.java": """
        package android.os;
        public final class ServiceManager {
            public static void addService(String name, IBinder service) { }
        }
    """,
}

GET_VALUE = "<com.android.server.foo.Svc: int getValue(java.lang.String)>"


def write_tree(root, files):
    for rel, text in files.items():
        path = os.path.join(root, rel)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)


class TestPipeline(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.app_root = os.path.join(self.tmp.name, "services")
        self.lib_root = os.path.join(self.tmp.name, "framework")
        write_tree(self.app_root, FILES)
        write_tree(self.lib_root, LIBRARY_FILES)

    def tearDown(self):
        self.tmp.cleanup()

    def config(self, **kwargs):
        values = dict(
            app_roots=[self.app_root],
            library_roots=[self.lib_root],
            paths_file=os.path.join(self.tmp.name, "core_paths.txt"),
            callgraph_file=os.path.join(self.tmp.name, "callgraph.txt"),
            console_summary=False,
        )
        values.update(kwargs)
        return AnalysisConfig(**values)

    def test_load_program_separates_application_and_library(self):
        program = load_program(self.config())
        self.assertTrue(program.get_type("com.android.server.foo.Svc").is_application)
        self.assertFalse(program.get_type("android.os.ServiceManager").is_application)

    def test_analyze_program_end_to_end(self):
        program = load_program(self.config())
        sink = CollectingTraceSink()
        result = analyze_program(program, self.config(), sink)

        self.assertEqual([m.signature for m in result.entry_points], [GET_VALUE])
        self.assertEqual(result.trace_count, 2)
        self.assertEqual([list(t.steps) for t in sink.traces], [
            ["return helper(key);", "return key.length();"],
            ["return helper(key);"],
        ])
        self.assertFalse(result.used_fallback)

    def test_registration_against_a_library_declaration(self):
        # addService(String, IBinder) is declared, so the call site resolves to it
        program = load_program(self.config())
        start = program.method("<com.android.server.SystemServer: void startOtherServices()>")
        site = start.instructions[0].call_sites[-1]
        self.assertEqual(site.target, "<android.os.ServiceManager: void addService(java.lang.String,android.os.IBinder)>")
        self.assertEqual(site.kind, "static")

    def test_run_analysis_writes_outputs(self):
        index_json = os.path.join(self.tmp.name, "index.json")
        result = run_analysis(self.config(index_json_file=index_json))

        self.assertEqual(result.trace_count, 2)
        with open(os.path.join(self.tmp.name, "core_paths.txt"), encoding="utf-8") as f:
            paths = f.read()
        self.assertEqual(paths.count(f"=== Core Path for {GET_VALUE} ==="), 2)
        with open(os.path.join(self.tmp.name, "callgraph.txt"), encoding="utf-8") as f:
            callgraph = f.read()
        self.assertIn(f"CALLER: {GET_VALUE}\n", callgraph)
        self.assertIn("    -> <com.android.server.foo.Svc: int helper(java.lang.String)>\n", callgraph)
        with open(index_json, encoding="utf-8") as f:
            self.assertIn("com.android.server.foo.Svc", [c["fqcn"] for c in json.load(f)["classes"]])

    def test_no_entry_points_skips_graph_and_outputs(self):
        empty = os.path.join(self.tmp.name, "empty")
        write_tree(empty, {"Idle.java": "package com.android.server; class Idle { void run() { } }"})
        config = self.config(app_roots=[empty])

        with self.assertRaises(NoEntryPointsError):
            run_analysis(config)
        self.assertFalse(os.path.exists(config.callgraph_file))
        self.assertFalse(os.path.exists(config.paths_file))

    def test_unwritable_paths_file_still_analyses(self):
        config = self.config(paths_file=os.path.join(self.tmp.name, "missing", "core_paths.txt"))
        with self.assertLogs("framework_surface.src.framework_surface.analysis", level="ERROR"):
            result = run_analysis(config)
        self.assertEqual(result.trace_count, 2)


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        config = AnalysisConfig()
        self.assertEqual(config.service_registration_methods, ["addService", "publishBinderService"])
        self.assertEqual(config.remote_interface_marker, "android.os.IInterface")
        self.assertEqual(config.server_namespace, "com.android.server")
        self.assertEqual(config.paths_file, "core_paths.txt")

    def test_file_round_trip_and_unknown_keys(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "surface.json")
            AnalysisConfig(server_namespace="com.vendor.server").save(path)
            self.assertEqual(AnalysisConfig.from_file(path).server_namespace, "com.vendor.server")

            with open(path, "w", encoding="utf-8") as f:
                json.dump({"log_level": "DEBUG", "colour": "blue"}, f)
            with self.assertLogs("framework_surface.src.framework_surface.config", level="WARNING"):
                config = AnalysisConfig.from_file(path)
        self.assertEqual(config.log_level, "DEBUG")

    def test_non_object_file_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "bad.json")
            with open(path, "w", encoding="utf-8") as f:
                f.write("[1, 2]")
            with self.assertRaises(ValueError):
                AnalysisConfig.from_file(path)


class TestCommandLine(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.out = self.tmp.name
        # main() installs its own root handlers
        root = logging.getLogger()
        self.saved_logging = (root.level, list(root.handlers))

    def tearDown(self):
        root = logging.getLogger()
        root.setLevel(self.saved_logging[0])
        root.handlers[:] = self.saved_logging[1]
        self.tmp.cleanup()

    def args(self, app_root):
        return [
            app_root,
            "--paths-out", os.path.join(self.out, "paths.txt"),
            "--callgraph-out", os.path.join(self.out, "cg.txt"),
            "--no-console",
            "--log-level", "WARNING",
        ]

    def test_success_exit_code(self):
        app_root = os.path.join(self.out, "services")
        write_tree(app_root, FILES)
        self.assertEqual(main(self.args(app_root)), 0)
        self.assertTrue(os.path.exists(os.path.join(self.out, "paths.txt")))
        self.assertTrue(os.path.exists(os.path.join(self.out, "cg.txt")))

    def test_no_entry_points_exit_code(self):
        app_root = os.path.join(self.out, "empty")
        write_tree(app_root, {"Idle.java": "package com.android.server; class Idle { }"})
        self.assertEqual(main(self.args(app_root)), 1)
        self.assertFalse(os.path.exists(os.path.join(self.out, "cg.txt")))
        self.assertFalse(os.path.exists(os.path.join(self.out, "paths.txt")))

    def test_bad_log_level_is_a_usage_error(self):
        with self.assertRaises(SystemExit) as ctx:
            main([self.out, "--log-level", "LOUD"])
        self.assertEqual(ctx.exception.code, 2)


if __name__ == '__main__':
    unittest.main()
