# Tests run headless: don't let pyglet open its hidden GL shadow window
# (which needs an X display) when pyglet.window is imported.
import pyglet

pyglet.options["shadow_window"] = False
