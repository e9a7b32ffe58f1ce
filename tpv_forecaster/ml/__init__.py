"""
ML forecasting layer — stacked ensembles per (segment, horizon).

Modules
-------
cross_validation : Repeated k-fold with pooled out-of-fold predictions.
ensemble         : EnsembleModel — scaler, selection, ElasticNet + KNN base
                   learners, LightGBM stacker (fit, predict, save, load).
trainer          : build_jobs() / train_all() — one job per pair on a
                   joblib worker pool, failures isolated per job.
predictor        : forecast() — scores live frames into the ForecastTable.
"""
