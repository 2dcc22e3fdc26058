"""VolleyProno: match lifecycle and prediction scoring engine."""
