"""
Tests for Tracer — tag inheritance, emission and scoped blocks.

Test categories:
  1. Root ids and tag inheritance
  2. Leveled emission and sink failure handling
  3. Scoped blocks: START/END entries, timing, stack push/pop
  4. Exception origin tracking through nested scopes
  5. Context isolation across threads and tasks
  6. Fail-open tag formatting and origin table lifetime
"""

import asyncio
import threading
import unittest
from contextlib import ExitStack
from unittest.mock import patch

from traceable import (
    ContextStack,
    InvalidParentError,
    Level,
    MemorySink,
    Traceable,
    Tracer,
    configured,
    run_isolated,
)


class TracerTestCase(unittest.TestCase):
    def setUp(self):
        self.sink = MemorySink()
        stack = ExitStack()
        stack.enter_context(configured(sink=self.sink, default_tags={}))
        self.addCleanup(stack.close)

    @property
    def logs(self):
        return self.sink.tags


class TestTagInheritance(TracerTestCase):
    def test_root_ids_are_unique(self):
        ids = {Tracer().tags["trace"] for _ in range(10)}
        self.assertEqual(len(ids), 10)

    def test_child_shares_trace_id(self):
        parent = Tracer(tags={"one": True})
        child = Tracer(parent, tags={"two": True})
        self.assertIs(child.parent, parent)
        self.assertEqual(child.trace_id, parent.trace_id)
        self.assertTrue(child.tags["one"])
        self.assertNotIn("two", parent.tags)

    def test_override_replaces_inherited_tag(self):
        parent = Tracer(tags={"stage": "load"})
        child = Tracer(parent, tags={"stage": "parse"})
        self.assertEqual(child.tags["stage"], "parse")
        self.assertEqual(parent.tags["stage"], "load")

    def test_tags_are_read_only(self):
        with self.assertRaises(TypeError):
            Tracer().tags["x"] = 1

    def test_tracer_provider_parent(self):
        owner = Traceable()
        child = Tracer(owner)
        self.assertIs(child.parent, owner.local_tracer())

    def test_invalid_parent(self):
        with self.assertRaises(InvalidParentError):
            Tracer("foo")
        with self.assertRaises(TypeError):
            Tracer(42)

    def test_default_tags_are_evaluated_per_root(self):
        counter = iter(range(100))
        with configured(default_tags={"service": "billing", "seq": lambda: next(counter)}):
            first, second = Tracer(), Tracer()
        self.assertEqual(first.tags["service"], "billing")
        self.assertEqual((first.tags["seq"], second.tags["seq"]), (0, 1))
        self.assertEqual(Tracer(first).tags["seq"], 0)

    def test_override_tags_are_formatted(self):
        with configured(max_array_values=2):
            tracer = Tracer(tags={"ids": [1, 2, 3]})
        self.assertEqual(tracer.tags["ids"], [1, "...(2)"])

    def test_sink_inheritance(self):
        other = MemorySink()
        parent = Tracer(sink=other)
        Tracer(parent).info("hi")
        self.assertEqual(len(other.entries), 1)
        self.assertEqual(self.sink.entries, [])


class TestEmission(TracerTestCase):
    def test_levels(self):
        tracer = Tracer()
        tracer.info("general info")
        tracer.warn("a warning")
        tracer.error("things look bad")
        tracer.fatal("fell on the floor")
        tracer.debug("fix me")
        self.assertEqual(
            self.sink.levels,
            [Level.INFO, Level.WARN, Level.ERROR, Level.FATAL, Level.DEBUG],
        )

    def test_flat_tag_map(self):
        tracer = Tracer(tags={"foo": "bar"})
        tracer.info("blah", extra=1)
        self.assertEqual(len(self.logs), 1)
        tags = self.logs[0]
        self.assertEqual(tags["message"], "blah")
        self.assertEqual(tags["foo"], "bar")
        self.assertEqual(tags["extra"], 1)
        self.assertEqual(tags["trace"], tracer.trace_id)

    def test_extra_tags_win(self):
        Tracer(tags={"foo": "bar"}).info("blah", foo="baz")
        self.assertEqual(self.logs[0]["foo"], "baz")

    def test_sink_failure_does_not_propagate(self):
        tracer = Tracer()
        with patch.object(self.sink, "emit", side_effect=RuntimeError("blow chunks")):
            with self.assertLogs("traceable.tracer", level="WARNING") as captured:
                tracer.info("just a test")
        self.assertIn("EXCEPTION in trace: blow chunks", captured.output[0])

    def test_sink_failure_inside_scope(self):
        tracer = Tracer()
        with patch.object(self.sink, "emit", side_effect=RuntimeError("boom")):
            with self.assertLogs("traceable.tracer", level="WARNING"):
                result = tracer.run_scoped("quiet", lambda tags: 7)
        self.assertEqual(result, 7)
        self.assertEqual(ContextStack.depth(), 0)


class TestScopedBlocks(TracerTestCase):
    def test_logs_start_and_end(self):
        tracer = Tracer()
        with tracer.scope("an example"):
            with tracer.scope("a nested block"):
                pass
        messages = [log["message"] for log in self.logs]
        self.assertEqual(
            messages,
            ["START: an example", "START: a nested block", "END: a nested block", "END: an example"],
        )
        self.assertTrue(self.logs[0]["enter"])
        self.assertTrue(self.logs[3]["exit"])

    def test_reports_elapsed_time(self):
        with Tracer().scope("timed"):
            pass
        exits = [log for log in self.logs if "exit" in log]
        self.assertEqual(len(exits), 1)
        self.assertIsInstance(exits[0]["elapsed"], float)
        self.assertGreaterEqual(exits[0]["elapsed"], 0)

    def test_block_tags_on_every_entry(self):
        with Tracer().scope("tagged", user="ann") as tags:
            self.assertEqual(tags, {"user": "ann"})
        self.assertEqual([log["user"] for log in self.logs], ["ann", "ann"])

    def test_run_scoped_passes_tags_and_returns(self):
        result = Tracer().run_scoped("compute", lambda tags: tags["n"] * 2, n=21)
        self.assertEqual(result, 42)
        self.assertEqual(len(self.logs), 2)

    def test_pushes_and_pops(self):
        tracer = Tracer()
        self.assertIsNone(ContextStack.top())
        with tracer.scope("outer"):
            self.assertIs(ContextStack.top(), tracer)
            self.assertIs(Tracer.default_parent(), tracer)
        self.assertIsNone(ContextStack.top())

    def test_pops_on_exception(self):
        with self.assertRaises(KeyError):
            with Tracer().scope("fails"):
                raise KeyError("k")
        self.assertEqual(ContextStack.depth(), 0)

    def test_pops_on_base_exception_without_logging_exit(self):
        with self.assertRaises(KeyboardInterrupt):
            with Tracer().scope("interrupted"):
                raise KeyboardInterrupt
        self.assertEqual(ContextStack.depth(), 0)
        self.assertEqual(len(self.logs), 1)

    def test_default_parent_from_scope(self):
        outer = Tracer(tags={"one": True})
        with outer.scope("outer"):
            inner = Tracer(tags={"three": True})
            inner.info("in the third")
        self.assertIs(inner.parent, outer)
        self.assertTrue(self.logs[1]["one"])
        self.assertEqual(self.logs[1]["trace"], self.logs[0]["trace"])


class TestExceptionOrigin(TracerTestCase):
    def test_single_scope_exception(self):
        with self.assertRaisesRegex(RuntimeError, "oops"):
            with Tracer().scope("work"):
                raise RuntimeError("oops")
        self.assertEqual(len(self.logs), 2)
        self.assertTrue(self.logs[0]["enter"])
        entry = self.logs[1]
        self.assertEqual(self.sink.levels[1], Level.WARN)
        self.assertTrue(entry["exception"])
        self.assertIn("elapsed", entry)
        self.assertEqual(entry["class"], "RuntimeError")
        self.assertEqual(entry["message"], "EXCEPTION: work => RuntimeError, oops")
        self.assertIn("RuntimeError: oops", entry["backtrace"])

    def test_error_is_reraised_unchanged(self):
        error = ValueError("bad")
        with self.assertRaises(ValueError) as ctx:
            with Tracer().scope("work"):
                raise error
        self.assertIs(ctx.exception, error)
        self.assertFalse(hasattr(error, "traceable_origin"))

    def test_nested_scopes_log_backtrace_once(self):
        tracer = Tracer()
        with self.assertRaisesRegex(RuntimeError, "oops"):
            with tracer.scope("level one"):
                with Tracer().scope("level two"):
                    with Tracer().scope("level three"):
                        raise RuntimeError("oops")

        exceptions = [log for log in self.logs if log.get("exception")]
        self.assertEqual(len(exceptions), 3)
        self.assertEqual(len([log for log in self.logs if log.get("enter")]), 3)
        self.assertEqual(len([log for log in exceptions if log.get("backtrace")]), 1)

        origin, middle, outer = exceptions
        self.assertIn("level three", origin["message"])
        self.assertIn("backtrace", origin)
        self.assertNotIn("propagated", origin["message"])
        for entry, label in ((middle, "level two"), (outer, "level one")):
            self.assertNotIn("backtrace", entry)
            self.assertEqual(
                entry["message"],
                f"EXCEPTION: {label} => RuntimeError [propagated from level three]",
            )

    def test_new_error_in_handler_gets_own_origin(self):
        with self.assertRaises(KeyError):
            with Tracer().scope("outer"):
                try:
                    with Tracer().scope("inner"):
                        raise ValueError("first")
                except ValueError:
                    raise KeyError("second")
        exceptions = [log for log in self.logs if log.get("exception")]
        self.assertEqual(len(exceptions), 2)
        self.assertIn("backtrace", exceptions[1])
        self.assertNotIn("propagated", exceptions[1]["message"])

    def test_origins_do_not_outlive_the_chain(self):
        error = RuntimeError("again")
        for _ in range(2):
            with self.assertRaises(RuntimeError):
                with Tracer().scope("root"):
                    raise error
        exceptions = [log for log in self.logs if log.get("exception")]
        self.assertTrue(all("backtrace" in log for log in exceptions))


class TestContextIsolation(TracerTestCase):
    def test_new_thread_starts_new_root(self):
        outer = Tracer(tags={"one": True})
        seen = {}

        def worker():
            seen["tracer"] = Tracer(sink=self.sink)

        with outer.scope("first"):
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join()

        spawned = seen["tracer"]
        self.assertIsNone(spawned.parent)
        self.assertNotIn("one", spawned.tags)
        self.assertNotEqual(spawned.trace_id, outer.trace_id)

    def test_run_isolated_starts_new_root(self):
        outer = Tracer()
        with outer.scope("first"):
            spawned = run_isolated(Tracer, sink=self.sink)
            self.assertIs(ContextStack.top(), outer)
        self.assertIsNone(spawned.parent)
        self.assertNotEqual(spawned.trace_id, outer.trace_id)


class Unrenderable:
    def __trace__(self):
        raise RuntimeError("render failed")


class TestFailOpen(TracerTestCase):
    def test_reserved_names_are_plain_tags(self):
        tracer = Tracer()
        tracer.info("x", message="override", level="custom")
        tracer.emit("warn", "y", message="z")
        self.assertEqual(self.logs[0]["message"], "override")
        self.assertEqual(self.logs[0]["level"], "custom")
        self.assertEqual(self.logs[1]["message"], "z")

    def test_scope_tags_named_like_parameters(self):
        tracer = Tracer()
        with tracer.scope("blk", label="foo") as tags:
            self.assertEqual(tags, {"label": "foo"})
        self.assertEqual(self.logs[0]["message"], "START: blk")
        self.assertEqual(self.logs[0]["label"], "foo")
        self.assertEqual(tracer.run_scoped("calc", lambda tags: tags["body"], body=5), 5)

    def test_failing_renderer_does_not_propagate(self):
        tracer = Tracer()
        with self.assertLogs("traceable.formatter", level="WARNING") as captured:
            tracer.info("x", obj=Unrenderable(), n=1)
        self.assertIn("render failed", captured.output[0])
        self.assertEqual(self.logs[0]["obj"], "<unformattable Unrenderable>")
        self.assertEqual(self.logs[0]["n"], 1)

    def test_failing_renderer_in_scope_and_overrides(self):
        with self.assertLogs("traceable.formatter", level="WARNING"):
            tracer = Tracer(tags={"owner": Unrenderable()})
            with tracer.scope("work", item=Unrenderable()):
                pass
        self.assertEqual(tracer.tags["owner"], "<unformattable Unrenderable>")
        self.assertEqual([log["item"] for log in self.logs], ["<unformattable Unrenderable>"] * 2)


class TestOriginTableLifetime(TracerTestCase):
    def test_handled_failures_do_not_accumulate(self):
        with Tracer().scope("server loop"):
            for i in range(1000):
                try:
                    with Tracer().scope("request"):
                        raise ValueError(i)
                except ValueError:
                    pass
                self.assertLessEqual(ContextStack.pending_origins(), 1)
            with Tracer().scope("healthcheck"):
                self.assertEqual(ContextStack.pending_origins(), 0)
            self.assertEqual(ContextStack.pending_origins(), 0)
        self.assertEqual(ContextStack.pending_origins(), 0)

    def test_handled_failure_marker_survives_reraise(self):
        with self.assertRaises(ValueError):
            with Tracer().scope("outer"):
                try:
                    with Tracer().scope("inner"):
                        raise ValueError("first")
                except ValueError:
                    with Tracer().scope("cleanup"):
                        pass
                    raise
        exceptions = [log for log in self.logs if log.get("exception")]
        self.assertEqual(len(exceptions), 2)
        self.assertIn("backtrace", exceptions[0])
        self.assertNotIn("backtrace", exceptions[1])
        self.assertIn("[propagated from inner]", exceptions[1]["message"])


class TestTaskIsolation(TracerTestCase):
    def test_new_task_starts_new_root(self):
        outer = Tracer(tags={"one": True})

        async def worker():
            return Tracer(), ContextStack.top()

        async def main():
            with outer.scope("spawn"):
                inline = Tracer()
                spawned, spawned_top = await asyncio.create_task(worker())
                self.assertIs(ContextStack.top(), outer)
            return inline, spawned, spawned_top

        inline, spawned, spawned_top = asyncio.run(main())
        self.assertIs(inline.parent, outer)
        self.assertIsNone(spawned_top)
        self.assertIsNone(spawned.parent)
        self.assertNotIn("one", spawned.tags)
        self.assertNotEqual(spawned.trace_id, outer.trace_id)

    def test_task_failure_is_tracked_in_its_own_table(self):
        async def worker():
            with Tracer().scope("task work"):
                raise KeyError("k")

        async def main():
            with Tracer().scope("spawn"):
                with self.assertRaises(KeyError):
                    await asyncio.create_task(worker())
                self.assertEqual(ContextStack.pending_origins(), 0)

        asyncio.run(main())
        exceptions = [log for log in self.logs if log.get("exception")]
        self.assertEqual(len(exceptions), 1)
        self.assertIn("backtrace", exceptions[0])



if __name__ == "__main__":
    unittest.main()
