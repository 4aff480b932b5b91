"""Tests for the in-memory node/connection store."""

from graph_store import GraphStore
from node_models import Connection, Node


def _ids(items):
    return [item.id for item in items]


class TestNodes:
    def test_add_node_assigns_unique_ids_and_default_style(self):
        store = GraphStore()
        first = store.add_node("A", 0, 0)
        second = store.add_node("B", 10, 10)

        assert first.id != second.id
        assert store.node_count() == 2
        assert first.style.background_color == "#3b82f6"
        assert first.style.shape == "rectangle"
        assert first.created_at == first.updated_at

    def test_update_node_text_touches_timestamp(self):
        store = GraphStore()
        node = store.add_node("A", 0, 0)
        before = node.updated_at

        assert store.update_node_text(node.id, "Renamed")
        assert node.text == "Renamed"
        assert node.updated_at >= before

    def test_updates_on_missing_node_are_noops(self):
        store = GraphStore()
        assert not store.update_node_text("missing", "x")
        assert not store.move_node("missing", 1, 1)
        assert not store.update_node_style("missing", "shape", "circle")

    def test_update_node_style_accepts_wire_and_attribute_names(self):
        store = GraphStore()
        node = store.add_node("A", 0, 0)

        assert store.update_node_style(node.id, "backgroundColor", "#10b981")
        assert store.update_node_style(node.id, "font_weight", "bold")
        assert node.style.background_color == "#10b981"
        assert node.style.font_weight == "bold"

    def test_update_node_style_rejects_invalid_values(self):
        store = GraphStore()
        node = store.add_node("A", 0, 0)

        assert not store.update_node_style(node.id, "shape", "hexagon")
        assert not store.update_node_style(node.id, "fontSize", -3)
        assert not store.update_node_style(node.id, "unknownKey", "x")
        assert node.style.shape == "rectangle"
        assert node.style.font_size == 14

    def test_move_node(self):
        store = GraphStore()
        node = store.add_node("A", 0, 0)
        assert store.move_node(node.id, 42.5, -7)
        assert (node.x, node.y) == (42.5, -7)


class TestDeleteNode:
    def test_connected_pair_then_delete_source(self):
        store = GraphStore()
        a = store.add_node("A", 100, 100)
        b = store.add_node("B", 300, 100)
        store.add_connection(a.id, b.id)
        assert (store.node_count(), store.connection_count()) == (2, 1)

        store.delete_node(a.id)

        assert [node.text for node in store.nodes] == ["B"]
        assert store.connection_count() == 0

    def test_delete_removes_node_and_its_connections(self):
        store = GraphStore()
        a = store.add_node("A", 0, 0)
        b = store.add_node("B", 100, 0)
        store.add_connection(a.id, b.id)

        removed = store.delete_node(a.id)

        assert removed == [a.id]
        assert _ids(store.nodes) == [b.id]
        assert store.connection_count() == 0

    def test_delete_cascades_through_parent_links(self):
        store = GraphStore()
        root = store.add_node("Root", 0, 0)
        child = store.add_node("Child", 0, 100, parent_id=root.id)
        grandchild = store.add_node("Grandchild", 0, 200, parent_id=child.id)
        other = store.add_node("Other", 300, 0)
        store.add_connection(grandchild.id, other.id)

        removed = store.delete_node(root.id)

        assert set(removed) == {root.id, child.id, grandchild.id}
        assert _ids(store.nodes) == [other.id]
        assert store.connection_count() == 0

    def test_delete_terminates_on_parent_cycle(self):
        store = GraphStore()
        a = Node(id="a", text="A", x=0, y=0, parent_id="b")
        b = Node(id="b", text="B", x=0, y=0, parent_id="a")
        store.replace([a, b], [])

        removed = store.delete_node("a")

        assert set(removed) == {"a", "b"}
        assert store.is_empty()

    def test_delete_absent_node_is_idempotent(self):
        store = GraphStore()
        store.add_node("A", 0, 0)
        assert store.delete_node("missing") == []
        assert store.node_count() == 1


class TestConnections:
    def test_self_connection_is_rejected(self):
        store = GraphStore()
        a = store.add_node("A", 0, 0)
        assert store.add_connection(a.id, a.id) is None
        assert store.connection_count() == 0

    def test_connection_to_unknown_node_is_rejected(self):
        store = GraphStore()
        a = store.add_node("A", 0, 0)
        assert store.add_connection(a.id, "ghost") is None

    def test_duplicate_connections_are_allowed(self):
        store = GraphStore()
        a = store.add_node("A", 0, 0)
        b = store.add_node("B", 0, 0)
        first = store.add_connection(a.id, b.id)
        second = store.add_connection(a.id, b.id)
        assert first.id != second.id
        assert store.connection_count() == 2
        assert first.style.color == "#64748b"

    def test_connections_for(self):
        store = GraphStore()
        a = store.add_node("A", 0, 0)
        b = store.add_node("B", 0, 0)
        c = store.add_node("C", 0, 0)
        ab = store.add_connection(a.id, b.id)
        store.add_connection(b.id, c.id)
        assert _ids(store.connections_for(a.id)) == [ab.id]
        assert len(store.connections_for(b.id)) == 2

    def test_update_and_delete_connection(self):
        store = GraphStore()
        a = store.add_node("A", 0, 0)
        b = store.add_node("B", 0, 0)
        connection = store.add_connection(a.id, b.id)

        assert store.update_connection_style(connection.id, "style", "dashed")
        assert store.update_connection_style(connection.id, "width", "4")
        assert not store.update_connection_style(connection.id, "style", "wavy")
        assert connection.style.style == "dashed"
        assert connection.style.width == 4

        assert store.delete_connection(connection.id)
        assert not store.delete_connection(connection.id)


class TestReplace:
    def test_replace_keeps_valid_graph(self):
        store = GraphStore()
        store.add_node("Old", 0, 0)
        nodes = [Node(id="a", text="A", x=0, y=0), Node(id="b", text="B", x=1, y=1)]
        connections = [Connection(id="c1", from_node_id="a", to_node_id="b")]

        report = store.replace(nodes, connections)

        assert report.clean
        assert report.describe() == "nothing"
        assert _ids(store.nodes) == ["a", "b"]
        assert _ids(store.connections) == ["c1"]

    def test_replace_drops_what_breaks_the_graph(self):
        store = GraphStore()
        nodes = [
            Node(id="a", text="A", x=0, y=0),
            Node(id="b", text="B", x=0, y=0),
            Node(id="a", text="A again", x=0, y=0),
        ]
        connections = [
            Connection(id="ok", from_node_id="a", to_node_id="b"),
            Connection(id="ok", from_node_id="b", to_node_id="a"),
            Connection(id="loop", from_node_id="a", to_node_id="a"),
            Connection(id="dangling", from_node_id="a", to_node_id="zzz"),
        ]

        report = store.replace(nodes, connections)

        assert not report.clean
        assert report.duplicate_nodes == ["a"]
        assert report.duplicate_connections == ["ok"]
        assert report.self_connections == ["loop"]
        assert report.dangling_connections == ["dangling"]
        assert store.get_node("a").text == "A"
        assert _ids(store.connections) == ["ok"]
        assert "1 dangling connection(s)" in report.describe()

    def test_snapshot_is_a_copy_of_the_lists(self):
        store = GraphStore()
        store.add_node("A", 0, 0)
        snapshot = store.snapshot()
        store.add_node("B", 0, 0)
        assert len(snapshot.nodes) == 1
