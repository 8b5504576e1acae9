"""Route/step dialogue engine: conditions, data, steps, routing and the turn pipeline."""
