"""Component library exporting the chatter demo nodes."""

from dai_ros_py.core.plugins import register_node
from dai_ros_py.modules.components.demo import Consumer, Producer

register_node(Producer, name="dai_ros_py::Producer", module=__name__)
register_node(Consumer, name="dai_ros_py::Consumer", module=__name__)
