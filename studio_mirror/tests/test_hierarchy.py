import unittest

from studio_mirror.errors import CyclicHierarchyError, MirrorError
from studio_mirror.hierarchy import build_hierarchy
from studio_mirror.models import Folder


class BuildHierarchyTests(unittest.TestCase):
    def test_nested_chain(self) -> None:
        folders = [
            Folder(id="1", name="Root", parent_id=None),
            Folder(id="2", name="Child", parent_id="1"),
            Folder(id="3", name="Grandchild", parent_id="2"),
        ]

        roots = build_hierarchy(folders)

        self.assertEqual([r.id for r in roots], ["1"])
        self.assertEqual([c.id for c in roots[0].children], ["2"])
        self.assertEqual([c.id for c in roots[0].children[0].children], ["3"])
        self.assertEqual(roots[0].children[0].children[0].children, [])

    def test_children_listed_before_parent(self) -> None:
        folders = [
            Folder(id="3", parent_id="2"),
            Folder(id="2", parent_id="1"),
            Folder(id="1"),
        ]

        roots = build_hierarchy(folders)

        self.assertEqual(roots[0].id, "1")
        self.assertEqual(roots[0].children[0].children[0].id, "3")

    def test_dangling_parent_becomes_root(self) -> None:
        with self.assertLogs("studio_mirror.hierarchy", level="WARNING") as logs:
            roots = build_hierarchy([Folder(id="x", parent_id="missing")])

        self.assertEqual([r.id for r in roots], ["x"])
        self.assertEqual(roots[0].parent_id, "missing")
        self.assertIn("invalid parent ID missing", logs.output[0])

    def test_roots_and_children_keep_input_order(self) -> None:
        folders = [
            Folder(id="r2"),
            Folder(id="r1"),
            Folder(id="c-b", parent_id="r2"),
            Folder(id="c-a", parent_id="r2"),
        ]

        roots = build_hierarchy(folders)

        self.assertEqual([r.id for r in roots], ["r2", "r1"])
        self.assertEqual([c.id for c in roots[0].children], ["c-b", "c-a"])

    def test_every_folder_appears_exactly_once(self) -> None:
        folders = [Folder(id=str(i), parent_id=str(i // 2) if i > 1 else None) for i in range(1, 30)]

        roots = build_hierarchy(folders)

        seen: list[str] = []
        stack = list(roots)
        while stack:
            node = stack.pop()
            seen.append(node.id)
            stack.extend(node.children)
        self.assertEqual(sorted(seen), sorted(f.id for f in folders))

    def test_input_is_not_mutated(self) -> None:
        folders = [Folder(id="1"), Folder(id="2", parent_id="1")]
        before = [f.model_dump() for f in folders]

        build_hierarchy(folders)

        self.assertEqual([f.model_dump() for f in folders], before)

    def test_empty_input(self) -> None:
        self.assertEqual(build_hierarchy([]), [])

    def test_cycle_raises(self) -> None:
        folders = [
            Folder(id="root"),
            Folder(id="a", parent_id="b"),
            Folder(id="b", parent_id="a"),
        ]

        with self.assertRaises(CyclicHierarchyError) as ctx:
            build_hierarchy(folders)

        self.assertEqual(sorted(ctx.exception.folder_ids), ["a", "b"])
        self.assertIsInstance(ctx.exception, MirrorError)

    def test_self_parent_is_a_cycle(self) -> None:
        with self.assertRaises(CyclicHierarchyError):
            build_hierarchy([Folder(id="loop", parent_id="loop")])


if __name__ == "__main__":
    unittest.main()
