"""Engine layers: sense (tree and locators), memory (patches and undo), action (apply and reconcile)."""
